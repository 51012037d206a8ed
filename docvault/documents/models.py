"""
DocVault Folder & File Models — Pydantic definitions.

Folder: node in the per-user folder forest with a denormalized path.
File: current-content pointer (storage_path/size/public_url) plus metadata.
FileRevision: immutable, versioned historical record of a File.
FileMetadata: enrichment state with an open extension map.

Path invariant: ``path == parent.path + "/" + name``; a root's path is
``"/" + name``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("docvault.documents.models")

PATH_SEPARATOR = "/"
KNOWN_METADATA_KEYS = ("needsProcessing", "processed", "description", "extractedText")


def _str_or(value: Any, default: Optional[str]) -> Optional[str]:
    return value if isinstance(value, str) else default


ADD_REVISION_DECISION = "add-revision"
RENAME_DECISION_PREFIX = "rename-to:"


# ---------------------------------------------------------------------------
# File metadata bag
# ---------------------------------------------------------------------------

class FileMetadata(BaseModel):
    """
    Enrichment state for a File.

    Known fields are typed; worker-supplied fields that the core does not
    reason about live in ``attributes``. The stored form is a flat JSON
    object using the wire names (``needsProcessing``, ``extractedText``).
    """

    model_config = ConfigDict(populate_by_name=True)

    needs_processing: bool = Field(default=False, alias="needsProcessing")
    processed: bool = False
    description: str = ""
    extracted_text: Optional[str] = Field(default=None, alias="extractedText")
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "FileMetadata":
        """Split a stored flat dict into known fields and the extension map."""
        raw = dict(raw or {})
        known = {k: raw.pop(k) for k in KNOWN_METADATA_KEYS if k in raw}
        # tolerate nested "attributes" written by older callers
        nested = raw.pop("attributes", None)
        if isinstance(nested, dict):
            raw = {**nested, **raw}
        return cls(
            needsProcessing=bool(known.get("needsProcessing", False)),
            processed=bool(known.get("processed", False)),
            description=_str_or(known.get("description"), ""),
            extractedText=_str_or(known.get("extractedText"), None),
            attributes=raw,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Flatten back to the stored form. Known fields win over attributes."""
        data: Dict[str, Any] = dict(self.attributes)
        data["needsProcessing"] = self.needs_processing
        data["processed"] = self.processed
        data["description"] = self.description
        if self.extracted_text is not None:
            data["extractedText"] = self.extracted_text
        return data


# ---------------------------------------------------------------------------
# Folder
# ---------------------------------------------------------------------------

class Folder(BaseModel):
    """A folder in one user's forest. ``parent_id=None`` marks the root."""

    id: str
    name: str = Field(max_length=255)
    parent_id: Optional[str] = None
    path: str
    created_by: str
    starred: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def child_path(self, name: str) -> str:
        return f"{self.path}{PATH_SEPARATOR}{name}"


# ---------------------------------------------------------------------------
# FileRevision
# ---------------------------------------------------------------------------

class FileRevision(BaseModel):
    """
    Immutable historical record of an upload against a File.

    Never updated or individually deleted; cascade-deleted with the File.
    Does not point at its own blob — the File's storage fields are the
    authoritative current content.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    file_id: str
    version: str
    changes: str = ""
    thumbnail: Optional[str] = None
    created_at: datetime
    created_by: str


# ---------------------------------------------------------------------------
# File
# ---------------------------------------------------------------------------

class File(BaseModel):
    """A file row. Revisions are ordered by ``created_at`` ascending."""

    id: str
    name: str = Field(max_length=255)
    folder_id: str
    path: str
    file_type: str = ""
    size: int = Field(default=0, ge=0)
    storage_path: Optional[str] = None
    public_url: Optional[str] = None
    thumbnail: Optional[str] = None
    created_by: str
    starred: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: FileMetadata = Field(default_factory=FileMetadata)
    revisions: List[FileRevision] = Field(default_factory=list)

    @property
    def latest_revision(self) -> Optional[FileRevision]:
        return self.revisions[-1] if self.revisions else None

    @property
    def current_version(self) -> Optional[str]:
        rev = self.latest_revision
        return rev.version if rev else None


# ---------------------------------------------------------------------------
# Operation inputs / outputs
# ---------------------------------------------------------------------------

@dataclass
class UploadedFile:
    """Bytes handed to the engine for upload, with the client-supplied name."""

    name: str
    data: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


class FolderContents(BaseModel):
    """Direct children of a folder (non-recursive)."""

    folders: List[Folder] = Field(default_factory=list)
    files: List[File] = Field(default_factory=list)


class ConflictResolution(BaseModel):
    """
    Caller decision for an upload whose name already exists in the folder.

    Parsed from the decision strings ``"add-revision"`` and
    ``"rename-to:<name>"``.
    """

    action: str
    new_name: Optional[str] = None

    @classmethod
    def add_revision(cls) -> "ConflictResolution":
        return cls(action="revision")

    @classmethod
    def rename_to(cls, name: str) -> "ConflictResolution":
        return cls(action="rename", new_name=name)

    @classmethod
    def parse(cls, decision: Any) -> "ConflictResolution":
        if isinstance(decision, ConflictResolution):
            return decision
        if not isinstance(decision, str):
            raise ValueError(f"Unrecognised conflict decision: {decision!r}")
        if decision == ADD_REVISION_DECISION:
            return cls.add_revision()
        if decision.startswith(RENAME_DECISION_PREFIX):
            name = decision[len(RENAME_DECISION_PREFIX):]
            if not name.strip():
                raise ValueError("rename-to decision requires a name")
            return cls.rename_to(name)
        raise ValueError(f"Unrecognised conflict decision: {decision!r}")

    @property
    def is_revision(self) -> bool:
        return self.action == "revision"
