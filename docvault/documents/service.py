"""
DocVault Filesystem Service — the virtual filesystem engine.

Handles:
- Per-user root bootstrap with path self-healing
- Folder create / rename / move with descendant path propagation
- Recursive delete (files, revisions, blobs, folders deepest-first)
- Upload with conflict decisions, revision versioning and progress milestones
- Detached enrichment notification and the out-of-band result entry point
- Starred / recent / search / breadcrumb queries

Every operation takes an explicit ``user_id`` and only sees rows owned by
that user. Structural violations raise typed DocVaultError subclasses;
incidental adapter failures (blob delete, enrichment, path propagation)
are logged and tolerated.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple, Union

from docvault.documents.models import (
    ConflictResolution,
    File,
    FileMetadata,
    FileRevision,
    Folder,
    FolderContents,
    UploadedFile,
)
from docvault.documents.utils import (
    DEFAULT_CONTENT_TYPE,
    file_extension,
    get_file_thumbnail,
    get_mime_type,
    new_id,
    next_version,
    rebase_path,
    replace_trailing_segment,
    root_path,
    validate_name,
)
from docvault.enrichment.notifier import EnrichmentNotifier, EnrichmentRequest, EnrichmentResult
from docvault.engine.config import DEFAULT_ENRICHMENT_TYPES, FilesystemConfig
from docvault.engine.errors import (
    ConflictError,
    InvalidOperationError,
    NotFoundError,
    StoreError,
)
from docvault.engine.logging import (
    log,
    log_enrichment_event,
    log_file_operation,
    log_folder_operation,
)
from docvault.storage.blobs import BlobStore
from docvault.storage.metadata import MetadataStore

logger = logging.getLogger("docvault.documents.service")

ITEM_TYPES = ("file", "folder")

ProgressCallback = Callable[[int], Any]
ConflictDecision = Union[str, ConflictResolution]
ConflictCallback = Callable[[str], Union[ConflictDecision, Awaitable[ConflictDecision]]]

# Upload progress milestones
PROGRESS_START = 0
PROGRESS_FOLDER_RESOLVED = 10
PROGRESS_CONFLICTS_CHECKED = 30
PROGRESS_UPLOAD_STARTED = 50
PROGRESS_BLOB_STORED = 70
PROGRESS_METADATA_SAVED = 90
PROGRESS_DONE = 100


class _ProgressReporter:
    """Forwards progress to a callback, never letting the value go backwards."""

    def __init__(self, callback: Optional[ProgressCallback]):
        self._callback = callback
        self.last = -1

    def __call__(self, value: int) -> None:
        value = max(0, min(100, int(value)))
        if value <= self.last:
            return
        self.last = value
        if self._callback is not None:
            self._callback(value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileSystemService:
    """
    Per-user folder forest and versioned files over a metadata store and
    a blob store.

    Usage:
        service = FileSystemService(MetadataStore(factory), BlobStore(backend), notifier)
        root = await service.bootstrap_root(user_id)
        folder = await service.create_folder(user_id, "Invoices", root.id)
        file = await service.upload_file(user_id, UploadedFile("a.pdf", data), folder.id)
    """

    def __init__(
        self,
        metadata: MetadataStore,
        blobs: BlobStore,
        notifier: Optional[EnrichmentNotifier] = None,
        config: Optional[FilesystemConfig] = None,
    ):
        self.metadata = metadata
        self.blobs = blobs
        self.notifier = notifier
        self.config = config or FilesystemConfig()
        self._background: Set[asyncio.Task] = set()

    @property
    def root_folder_name(self) -> str:
        return self.config.root_folder_name

    @property
    def enrichment_types(self) -> List[str]:
        if self.notifier is not None:
            return self.notifier.supported_types
        return list(DEFAULT_ENRICHMENT_TYPES)

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------

    @staticmethod
    def _check_item_type(item_type: str) -> None:
        if item_type not in ITEM_TYPES:
            raise InvalidOperationError(
                f"Unknown item type '{item_type}', expected one of {ITEM_TYPES}",
                entity_type=item_type,
            )

    async def _require_folder(self, user_id: str, folder_id: str) -> Folder:
        folder = await self.metadata.get_folder(user_id, folder_id)
        if folder is None:
            raise NotFoundError(
                f"Folder not found: {folder_id}",
                entity_type="folder", entity_id=folder_id, user_id=user_id,
            )
        return folder

    async def _require_file(self, user_id: str, file_id: str) -> File:
        file = await self.metadata.get_file(user_id, file_id)
        if file is None:
            raise NotFoundError(
                f"File not found: {file_id}",
                entity_type="file", entity_id=file_id, user_id=user_id,
            )
        return file

    async def get_folder(self, user_id: str, folder_id: str) -> Folder:
        return await self._require_folder(user_id, folder_id)

    async def get_file(self, user_id: str, file_id: str) -> File:
        return await self._require_file(user_id, file_id)

    # -------------------------------------------------------------------
    # Root
    # -------------------------------------------------------------------

    async def bootstrap_root(self, user_id: str) -> Folder:
        """
        Return the user's root folder, creating it on first use.

        Idempotent. A root whose stored path has drifted from
        ``"/" + name`` is repaired, together with its descendants.
        """
        name = self.root_folder_name
        expected = root_path(name)
        root = await self.metadata.find_root_folder(user_id, name)

        if root is not None:
            if root.path != expected:
                old_path = root.path
                logger.warning(f"Root folder {root.id} path drifted to '{old_path}', healing to '{expected}'")
                root = await self.metadata.update_folder(user_id, root.id, path=expected) or root
                updated, failures = await self._update_subpaths(user_id, old_path, expected)
                log(log_folder_operation(
                    "path_healed", root.id, user_id, path=expected, old_path=old_path,
                    descendants_updated=updated, propagation_failures=failures,
                ))
            return root

        root = await self.metadata.insert_folder(Folder(
            id=new_id(),
            name=name,
            parent_id=None,
            path=expected,
            created_by=user_id,
        ))
        logger.info(f"Created root folder {root.id} for user {user_id}")
        log(log_folder_operation("created", root.id, user_id, path=root.path))
        return root

    # -------------------------------------------------------------------
    # Listing and queries
    # -------------------------------------------------------------------

    async def list_contents(self, user_id: str, folder_id: str) -> FolderContents:
        """Direct children of ``folder_id``; files carry their revisions."""
        await self._require_folder(user_id, folder_id)
        folders = await self.metadata.list_folders_by_parent(user_id, folder_id)
        files = await self.metadata.list_files_by_folder(user_id, folder_id)
        return FolderContents(folders=folders, files=files)

    async def get_folder_path(self, user_id: str, folder_id: str) -> List[Folder]:
        """Breadcrumb from the root down to ``folder_id``."""
        folder = await self._require_folder(user_id, folder_id)
        trail = [folder]
        seen = {folder.id}
        while folder.parent_id is not None and folder.parent_id not in seen:
            parent = await self.metadata.get_folder(user_id, folder.parent_id)
            if parent is None:
                logger.warning(f"Folder {folder.id} points at missing parent {folder.parent_id}")
                break
            trail.append(parent)
            seen.add(parent.id)
            folder = parent
        trail.reverse()
        return trail

    async def list_starred(self, user_id: str) -> FolderContents:
        folders = await self.metadata.list_starred_folders(user_id)
        files = await self.metadata.list_files(user_id, starred=True)
        return FolderContents(folders=folders, files=files)

    async def list_recent(self, user_id: str, limit: Optional[int] = None) -> List[File]:
        limit = self.config.recent_limit if limit is None else limit
        if limit <= 0:
            return []
        return await self.metadata.list_files(user_id, limit=limit)

    async def search_files(self, user_id: str, query: str) -> List[File]:
        """Case-insensitive substring match on name and extracted text."""
        needle = (query or "").strip().lower()
        if not needle:
            return []
        matches = []
        for file in await self.metadata.list_files(user_id):
            text = file.metadata.extracted_text or ""
            if needle in file.name.lower() or needle in text.lower():
                matches.append(file)
        return matches

    async def list_revisions(self, user_id: str, file_id: str) -> List[FileRevision]:
        await self._require_file(user_id, file_id)
        return await self.metadata.list_revisions(user_id, file_id)

    async def download_file(self, user_id: str, file_id: str) -> bytes:
        file = await self._require_file(user_id, file_id)
        if not file.storage_path:
            raise NotFoundError(
                f"File {file_id} has no stored content",
                entity_type="file", entity_id=file_id, user_id=user_id,
            )
        return await self.blobs.download(file.storage_path)

    # -------------------------------------------------------------------
    # Folder mutations
    # -------------------------------------------------------------------

    async def create_folder(self, user_id: str, name: str, parent_id: Optional[str] = None) -> Folder:
        """Create ``name`` under ``parent_id``, or under the root when None."""
        self._validate_name(name, "folder", user_id)
        if parent_id is None:
            parent = await self.bootstrap_root(user_id)
        else:
            parent = await self._require_folder(user_id, parent_id)

        folder = await self.metadata.insert_folder(Folder(
            id=new_id(),
            name=name,
            parent_id=parent.id,
            path=parent.child_path(name),
            created_by=user_id,
        ))
        logger.info(f"Created folder {folder.path} ({folder.id})")
        log(log_folder_operation("created", folder.id, user_id, path=folder.path))
        return folder

    async def _update_subpaths(self, user_id: str, old_prefix: str, new_prefix: str) -> Tuple[int, int]:
        """
        Rewrite the path prefix of everything below ``old_prefix``.

        Returns (updated, failed). Per-row failures are logged and counted;
        the rows keep their stale path until repaired.
        """
        if old_prefix == new_prefix:
            return 0, 0
        try:
            folders, files = await self.metadata.find_by_path_prefix(user_id, old_prefix)
        except StoreError as e:
            logger.error(f"Path propagation lookup under '{old_prefix}' failed: {e}")
            return 0, 1

        updated = failed = 0
        for folder in folders:
            new_path = rebase_path(folder.path, old_prefix, new_prefix)
            if new_path is None:
                continue
            try:
                await self.metadata.update_folder(user_id, folder.id, touch=False, path=new_path)
                updated += 1
            except StoreError as e:
                failed += 1
                logger.error(f"Path propagation failed for folder {folder.id} ({folder.path} -> {new_path}): {e}")
        for file in files:
            new_path = rebase_path(file.path, old_prefix, new_prefix)
            if new_path is None:
                continue
            try:
                await self.metadata.update_file(user_id, file.id, touch=False, path=new_path)
                updated += 1
            except StoreError as e:
                failed += 1
                logger.error(f"Path propagation failed for file {file.id} ({file.path} -> {new_path}): {e}")

        if failed:
            logger.warning(f"Path propagation '{old_prefix}' -> '{new_prefix}': {updated} updated, {failed} failed")
        return updated, failed

    async def rename_item(self, user_id: str, item_id: str, new_name: str, item_type: str) -> Union[Folder, File]:
        """Rename a file or folder; folder renames rewrite descendant paths."""
        self._check_item_type(item_type)
        self._validate_name(new_name, item_type, user_id)

        if item_type == "file":
            file = await self._require_file(user_id, item_id)
            old_path = file.path
            new_path = replace_trailing_segment(old_path, new_name)
            renamed = await self.metadata.update_file(user_id, file.id, name=new_name, path=new_path)
            if renamed is None:
                raise NotFoundError(f"File not found: {item_id}", entity_type="file", entity_id=item_id, user_id=user_id)
            log(log_file_operation("renamed", file.id, user_id, path=new_path))
            return renamed

        folder = await self._require_folder(user_id, item_id)
        if folder.is_root:
            raise InvalidOperationError(
                "The root folder cannot be renamed",
                entity_type="folder", entity_id=folder.id, user_id=user_id,
            )
        old_path = folder.path
        new_path = replace_trailing_segment(old_path, new_name)
        renamed = await self.metadata.update_folder(user_id, folder.id, name=new_name, path=new_path)
        if renamed is None:
            raise NotFoundError(f"Folder not found: {item_id}", entity_type="folder", entity_id=item_id, user_id=user_id)
        updated, failures = await self._update_subpaths(user_id, old_path, new_path)
        logger.info(f"Renamed folder {old_path} -> {new_path} ({updated} descendants)")
        log(log_folder_operation(
            "renamed", folder.id, user_id, path=new_path, old_path=old_path,
            descendants_updated=updated, propagation_failures=failures,
        ))
        return renamed

    async def _ensure_not_within(self, user_id: str, folder_id: str, target: Folder) -> None:
        """Walk up from ``target``; raise if ``folder_id`` is on the way to the root."""
        current: Optional[Folder] = target
        seen: Set[str] = set()
        while current is not None:
            if current.id == folder_id:
                raise InvalidOperationError(
                    "Cannot move a folder into itself or one of its descendants",
                    entity_type="folder", entity_id=folder_id, user_id=user_id,
                    target_folder_id=target.id,
                )
            if current.parent_id is None:
                return
            if current.id in seen:
                raise InvalidOperationError(
                    f"Folder ancestry of {target.id} contains a cycle",
                    entity_type="folder", entity_id=target.id, user_id=user_id,
                )
            seen.add(current.id)
            current = await self.metadata.get_folder(user_id, current.parent_id)

    async def move_item(self, user_id: str, item_id: str, target_folder_id: str, item_type: str) -> Union[Folder, File]:
        """Reparent a file or folder under ``target_folder_id``."""
        self._check_item_type(item_type)

        if item_type == "file":
            file = await self._require_file(user_id, item_id)
            target = await self._require_folder(user_id, target_folder_id)
            new_path = target.child_path(file.name)
            moved = await self.metadata.update_file(user_id, file.id, folder_id=target.id, path=new_path)
            if moved is None:
                raise NotFoundError(f"File not found: {item_id}", entity_type="file", entity_id=item_id, user_id=user_id)
            log(log_file_operation("moved", file.id, user_id, path=new_path))
            return moved

        if target_folder_id == item_id:
            raise InvalidOperationError(
                "Cannot move a folder into itself",
                entity_type="folder", entity_id=item_id, user_id=user_id,
            )
        folder = await self._require_folder(user_id, item_id)
        if folder.is_root:
            raise InvalidOperationError(
                "The root folder cannot be moved",
                entity_type="folder", entity_id=folder.id, user_id=user_id,
            )
        target = await self._require_folder(user_id, target_folder_id)
        await self._ensure_not_within(user_id, folder.id, target)

        old_path = folder.path
        new_path = target.child_path(folder.name)
        moved = await self.metadata.update_folder(user_id, folder.id, parent_id=target.id, path=new_path)
        if moved is None:
            raise NotFoundError(f"Folder not found: {item_id}", entity_type="folder", entity_id=item_id, user_id=user_id)
        updated, failures = await self._update_subpaths(user_id, old_path, new_path)
        logger.info(f"Moved folder {old_path} -> {new_path} ({updated} descendants)")
        log(log_folder_operation(
            "moved", folder.id, user_id, path=new_path, old_path=old_path,
            descendants_updated=updated, propagation_failures=failures,
        ))
        return moved

    # -------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------

    async def _delete_file(self, user_id: str, file: File) -> None:
        if file.storage_path:
            try:
                await self.blobs.delete(file.storage_path)
            except Exception as e:
                # metadata removal proceeds; the blob is left orphaned
                logger.warning(f"Blob delete failed for file {file.id} ({file.storage_path}): {e}")
        await self.metadata.delete_revisions(user_id, file.id)
        await self.metadata.delete_file(user_id, file.id)
        log(log_file_operation("deleted", file.id, user_id, path=file.path))

    async def delete_item(self, user_id: str, item_id: str, item_type: str) -> None:
        """
        Delete a file, or a folder with everything below it.

        Folder deletes remove every file in the subtree first, then the
        descendant folders deepest-first, then the folder itself.
        """
        self._check_item_type(item_type)

        if item_type == "file":
            file = await self._require_file(user_id, item_id)
            await self._delete_file(user_id, file)
            return

        folder = await self._require_folder(user_id, item_id)
        descendants: List[Folder] = []
        queue = deque([folder.id])
        seen = {folder.id}
        while queue:
            parent_id = queue.popleft()
            for child in await self.metadata.list_folders_by_parent(user_id, parent_id):
                if child.id in seen:
                    continue
                seen.add(child.id)
                descendants.append(child)
                queue.append(child.id)

        file_count = 0
        for folder_id in [folder.id] + [d.id for d in descendants]:
            for file in await self.metadata.list_files_by_folder(user_id, folder_id):
                await self._delete_file(user_id, file)
                file_count += 1

        for child in reversed(descendants):
            await self.metadata.delete_folder(user_id, child.id)
        await self.metadata.delete_folder(user_id, folder.id)

        logger.info(
            f"Deleted folder {folder.path} with {len(descendants)} subfolders and {file_count} files"
        )
        log(log_folder_operation(
            "deleted", folder.id, user_id, path=folder.path, descendants_updated=len(descendants),
        ))

    # -------------------------------------------------------------------
    # Star / description
    # -------------------------------------------------------------------

    async def toggle_starred(self, user_id: str, item_id: str, item_type: str) -> bool:
        """Flip ``starred`` and return the new value. Last write wins."""
        self._check_item_type(item_type)
        if item_type == "file":
            file = await self._require_file(user_id, item_id)
            starred = not file.starred
            await self.metadata.update_file(user_id, file.id, starred=starred)
            log(log_file_operation("starred" if starred else "unstarred", file.id, user_id))
            return starred

        folder = await self._require_folder(user_id, item_id)
        starred = not folder.starred
        await self.metadata.update_folder(user_id, folder.id, starred=starred)
        log(log_folder_operation("starred" if starred else "unstarred", folder.id, user_id))
        return starred

    async def update_description(self, user_id: str, file_id: str, description: str) -> File:
        file = await self._require_file(user_id, file_id)
        metadata = file.metadata.model_copy(update={"description": description or ""})
        updated = await self.metadata.update_file(user_id, file.id, metadata=metadata)
        if updated is None:
            raise NotFoundError(f"File not found: {file_id}", entity_type="file", entity_id=file_id, user_id=user_id)
        log(log_file_operation("described", file.id, user_id))
        return updated

    # -------------------------------------------------------------------
    # Upload
    # -------------------------------------------------------------------

    async def initialize_storage(self) -> bool:
        return await self.blobs.ensure_container_exists()

    async def _find_existing(self, user_id: str, folder_id: str, name: str) -> Optional[File]:
        matches = await self.metadata.find_files_by_name(user_id, folder_id, name)
        return matches[0] if matches else None

    async def _resolve_conflict(
        self,
        user_id: str,
        existing: File,
        folder: Folder,
        on_conflict: Optional[ConflictCallback],
    ) -> ConflictResolution:
        if on_conflict is None:
            raise ConflictError(
                f"A file named '{existing.name}' already exists in {folder.path}",
                entity_type="file", entity_id=existing.id, user_id=user_id,
                existing_file_id=existing.id, file_name=existing.name, folder_id=folder.id,
            )
        decision = on_conflict(existing.id)
        if inspect.isawaitable(decision):
            decision = await decision
        try:
            return ConflictResolution.parse(decision)
        except ValueError as e:
            raise InvalidOperationError(
                str(e), entity_type="file", entity_id=existing.id, user_id=user_id,
            ) from e

    def _validate_name(self, name: str, entity_type: str, user_id: str) -> None:
        reason = validate_name(name)
        if reason:
            raise InvalidOperationError(
                f"Invalid {entity_type} name {name!r}: {reason}",
                entity_type=entity_type, user_id=user_id,
            )

    async def upload_file(
        self,
        user_id: str,
        upload: UploadedFile,
        folder_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        as_revision: bool = False,
        on_conflict: Optional[ConflictCallback] = None,
    ) -> File:
        """
        Store ``upload`` in ``folder_id`` (the root when None) and record a
        revision.

        A name clash needs a decision: ``as_revision=True`` adds a revision
        to the existing file, otherwise ``on_conflict(existing_file_id)``
        must answer ``"add-revision"`` or ``"rename-to:<name>"``. Without
        either, ConflictError is raised and nothing is written.

        The blob is written before any metadata. Progress values are
        non-decreasing and end at 100 on success. Enrichment runs as a
        detached task after the File is returned.

        Raises:
            InvalidOperationError: bad name or payload over the size limit.
            NotFoundError: ``folder_id`` does not resolve for this user.
            ConflictError: name clash without a decision.
            UploadError: blob transfer failed after retry.
            StoreError: metadata write failed; ``orphaned_blob`` names the stored blob.
        """
        start = time.monotonic()
        progress = _ProgressReporter(on_progress)
        progress(PROGRESS_START)

        self._validate_name(upload.name, "file", user_id)
        if upload.size > self.blobs.size_limit:
            raise InvalidOperationError(
                f"File '{upload.name}' is {upload.size} bytes, over the {self.blobs.size_limit} byte limit",
                entity_type="file", user_id=user_id, size=upload.size,
            )

        if folder_id is None:
            folder = await self.bootstrap_root(user_id)
        else:
            folder = await self._require_folder(user_id, folder_id)
        progress(PROGRESS_FOLDER_RESOLVED)

        name = upload.name
        target: Optional[File] = None
        existing = await self._find_existing(user_id, folder.id, name)
        if existing is not None:
            if as_revision:
                target = existing
            else:
                resolution = await self._resolve_conflict(user_id, existing, folder, on_conflict)
                if resolution.is_revision:
                    target = existing
                else:
                    name = resolution.new_name
                    self._validate_name(name, "file", user_id)
                    clash = await self._find_existing(user_id, folder.id, name)
                    if clash is not None:
                        raise ConflictError(
                            f"A file named '{name}' already exists in {folder.path}",
                            entity_type="file", entity_id=clash.id, user_id=user_id,
                            existing_file_id=clash.id, file_name=name, folder_id=folder.id,
                        )
        progress(PROGRESS_CONFLICTS_CHECKED)

        file_type = file_extension(name)
        blob_id = new_id()
        file_id = target.id if target is not None else blob_id
        key = BlobStore.make_key(user_id, blob_id, file_type)
        content_type = upload.content_type or get_mime_type(name) or DEFAULT_CONTENT_TYPE

        await self.initialize_storage()
        progress(PROGRESS_UPLOAD_STARTED)
        await self.blobs.upload(
            key, upload.data, content_type,
            on_progress=lambda pct: progress(
                PROGRESS_UPLOAD_STARTED + pct * (PROGRESS_BLOB_STORED - PROGRESS_UPLOAD_STARTED) // 100
            ),
        )
        progress(PROGRESS_BLOB_STORED)

        public_url = await self.blobs.get_public_url(key)
        needs_processing = file_type in self.enrichment_types

        try:
            file, revision = await self._save_upload(
                user_id, folder, target, file_id, name, file_type, upload.size,
                key, public_url, needs_processing,
            )
        except StoreError as e:
            logger.error(f"Blob {key} stored but metadata write for '{name}' failed: {e.message}")
            raise StoreError(
                f"Upload of '{name}' stored blob {key} but the metadata write failed: {e.message}",
                entity_type="file", entity_id=file_id, user_id=user_id,
                operation=e.operation, orphaned_blob=key,
            ) from e
        progress(PROGRESS_METADATA_SAVED)

        duration_ms = (time.monotonic() - start) * 1000
        logger.info(f"Uploaded {file.path} v{revision.version} ({upload.size} bytes) in {duration_ms:.1f}ms")
        log(log_file_operation(
            "revised" if target is not None else "uploaded", file.id, user_id,
            path=file.path, version=revision.version, size=upload.size, duration_ms=duration_ms,
        ))

        if needs_processing and self.notifier is not None and self.notifier.enabled:
            self._spawn_enrichment(user_id, file)

        progress(PROGRESS_DONE)
        return file

    async def _save_upload(
        self,
        user_id: str,
        folder: Folder,
        target: Optional[File],
        file_id: str,
        name: str,
        file_type: str,
        size: int,
        key: str,
        public_url: Optional[str],
        needs_processing: bool,
    ) -> Tuple[File, FileRevision]:
        """Write the File row then its revision. Returns the File with all revisions."""
        thumbnail = get_file_thumbnail(file_type)
        if target is not None:
            metadata = target.metadata.model_copy(update={
                "needs_processing": needs_processing,
                "processed": False,
                "extracted_text": None,
            })
            saved = await self.metadata.update_file(
                user_id, target.id,
                size=size, storage_path=key, public_url=public_url, metadata=metadata,
            )
            if saved is None:
                raise StoreError(
                    f"File {target.id} disappeared before its revision was recorded",
                    operation="update_file", entity_type="file", entity_id=target.id,
                )
        else:
            await self.metadata.insert_file(File(
                id=file_id,
                name=name,
                folder_id=folder.id,
                path=folder.child_path(name),
                file_type=file_type,
                size=size,
                storage_path=key,
                public_url=public_url,
                thumbnail=thumbnail,
                created_by=user_id,
                metadata=FileMetadata(needs_processing=needs_processing),
            ))

        latest = await self.metadata.get_latest_revision(user_id, file_id)
        version = next_version(latest.version if latest else None)
        created_at = _utcnow()
        if latest is not None and created_at <= latest.created_at:
            created_at = latest.created_at + timedelta(microseconds=1)

        revision = await self.metadata.insert_revision(FileRevision(
            id=new_id(),
            file_id=file_id,
            version=version,
            changes="Initial upload" if latest is None else f"Updated to version {version}",
            thumbnail=thumbnail,
            created_at=created_at,
            created_by=user_id,
        ))

        file = await self.metadata.get_file(user_id, file_id)
        if file is None:
            raise StoreError(
                f"File {file_id} not readable after upload",
                operation="get_file", entity_type="file", entity_id=file_id,
            )
        return file, revision

    # -------------------------------------------------------------------
    # Enrichment
    # -------------------------------------------------------------------

    def _spawn_enrichment(self, user_id: str, file: File) -> asyncio.Task:
        request = EnrichmentRequest(
            fileId=file.id,
            folderId=file.folder_id,
            userId=user_id,
            fileType=file.file_type,
            storagePath=file.storage_path,
            publicUrl=file.public_url,
            fileName=file.name,
        )
        task = asyncio.create_task(self._run_enrichment(user_id, request), name=f"enrich-{file.id}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _run_enrichment(self, user_id: str, request: EnrichmentRequest) -> None:
        try:
            result = await self.notifier.notify(request)
            if result is not None:
                # the worker may answer with its own job id
                result = result.model_copy(update={"id": request.file_id})
                await self.apply_enrichment_result(user_id, result)
        except Exception as e:
            # detached: the upload has already been returned to its caller
            logger.error(f"Enrichment for file {request.file_id} failed: {e}")
            log(log_enrichment_event("enrichment_failed", request.file_id, user_id=user_id, error=str(e)))

    async def apply_enrichment_result(self, user_id: str, result: EnrichmentResult) -> Optional[File]:
        """
        Merge a worker result into the file's metadata.

        An unprocessed result changes nothing and returns None. Otherwise
        worker fields are merged over the stored metadata, the file is
        marked processed and the thumbnail replaced when one was supplied.
        """
        if not result.processed:
            logger.debug(f"Unprocessed enrichment result for {result.id}, nothing to merge")
            return None

        file = await self._require_file(user_id, result.id)
        merged = FileMetadata.from_dict({**file.metadata.to_dict(), **result.metadata})
        merged = merged.model_copy(update={
            "needs_processing": False,
            "processed": True,
            "extracted_text": result.extracted_text,
        })
        updated = await self.metadata.update_file(
            user_id, file.id,
            metadata=merged,
            thumbnail=result.thumbnail_url or file.thumbnail,
        )
        if updated is None:
            raise NotFoundError(f"File not found: {result.id}", entity_type="file", entity_id=result.id, user_id=user_id)
        logger.info(f"Applied enrichment result to file {file.id}")
        log(log_enrichment_event("enrichment_applied", file.id, user_id=user_id, processed=True))
        return updated

    @property
    def pending_background_tasks(self) -> int:
        return len(self._background)

    async def wait_for_background_tasks(self) -> None:
        """Await every outstanding enrichment task."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
