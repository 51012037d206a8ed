"""
DocVault Error Hierarchy — Structured exceptions for the virtual filesystem.

Every error carries its context as keyword arguments so it can be written
to the structured log trail unchanged.

Hierarchy:
    DocVaultError
    ├── NotFoundError          — Entity absent or not owned by the caller
    ├── InvalidOperationError  — Illegal move, empty/invalid name, size limit
    ├── UploadError            — Blob transfer failed after retry
    ├── ConflictError          — Name collision requiring a caller decision
    └── StoreError             — Adapter failure wrapping a transport error
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class DocVaultError(Exception):
    """
    Base error for all DocVault failures.
    All context is serializable to JSON.
    """

    _reserved = ("entity_type", "entity_id", "user_id")

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.entity_type: Optional[str] = context.get("entity_type")
        self.entity_id: Optional[str] = context.get("entity_id")
        self.user_id: Optional[str] = context.get("user_id")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict for logging."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in self._reserved
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.entity_type:
            parts.append(f"entity_type={self.entity_type}")
        if self.entity_id:
            parts.append(f"entity_id={self.entity_id}")
        return " | ".join(parts)


class NotFoundError(DocVaultError):
    """Entity absent, or present but not owned by the requesting user."""
    pass


class InvalidOperationError(DocVaultError):
    """
    Structural or input violation: moving a folder into its own subtree,
    empty or slash-containing names, oversized uploads.
    """
    pass


class UploadError(DocVaultError):
    """Blob transfer failed after the alternate-representation retry."""

    def __init__(self, message: str, **context: Any):
        self.storage_path: Optional[str] = context.get("storage_path")
        self.attempts: int = context.get("attempts", 0)
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["storage_path"] = self.storage_path
        d["attempts"] = self.attempts
        return d


class ConflictError(DocVaultError):
    """
    A file with the same name already exists in the target folder and the
    caller supplied no resolution (neither as_revision nor on_conflict).
    """

    def __init__(self, message: str, **context: Any):
        self.existing_file_id: Optional[str] = context.get("existing_file_id")
        self.file_name: Optional[str] = context.get("file_name")
        self.folder_id: Optional[str] = context.get("folder_id")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["existing_file_id"] = self.existing_file_id
        d["file_name"] = self.file_name
        d["folder_id"] = self.folder_id
        return d


class StoreError(DocVaultError):
    """
    Metadata or blob store operation failed.

    When a blob was already committed before the failing metadata write,
    ``orphaned_blob`` holds its storage path so the caller can retry or
    clean up.
    """

    def __init__(self, message: str, **context: Any):
        self.operation: Optional[str] = context.get("operation")
        self.orphaned_blob: Optional[str] = context.get("orphaned_blob")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["operation"] = self.operation
        d["orphaned_blob"] = self.orphaned_blob
        return d
