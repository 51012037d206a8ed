"""
Metadata Store Adapter — typed async operations over the folders, files
and file_revisions tables.

Every operation takes an explicit ``owner_id`` and filters on
``created_by``; tenant isolation by parameterized filtering is the only
access control this layer performs. SQLAlchemy sessions are synchronous,
so each operation runs in a worker thread via ``asyncio.to_thread``.
Transport failures surface as ``StoreError``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docvault.db.base import utcnow
from docvault.db.models import FileRecord, FileRevisionRecord, FolderRecord
from docvault.db.session import session_scope
from docvault.documents.models import File, FileMetadata, FileRevision, Folder, PATH_SEPARATOR
from docvault.engine.errors import StoreError

logger = logging.getLogger("docvault.storage.metadata")

T = TypeVar("T")

LIKE_ESCAPE = "\\"


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on the way back; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _escape_like(value: str) -> str:
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def folder_from_record(record: FolderRecord) -> Folder:
    return Folder(
        id=record.id,
        name=record.name,
        parent_id=record.parent_id,
        path=record.path,
        created_by=record.created_by,
        starred=bool(record.starred),
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


def revision_from_record(record: FileRevisionRecord) -> FileRevision:
    return FileRevision(
        id=record.id,
        file_id=record.file_id,
        version=record.version,
        changes=record.changes or "",
        thumbnail=record.thumbnail,
        created_at=_aware(record.created_at),
        created_by=record.created_by,
    )


def file_from_record(record: FileRecord, with_revisions: bool = True) -> File:
    revisions: List[FileRevision] = []
    if with_revisions:
        revisions = sorted(
            (revision_from_record(r) for r in record.revisions),
            key=lambda r: r.created_at,
        )
    return File(
        id=record.id,
        name=record.name,
        folder_id=record.folder_id,
        path=record.path,
        file_type=record.file_type or "",
        size=record.size or 0,
        storage_path=record.storage_path,
        public_url=record.public_url,
        thumbnail=record.thumbnail,
        created_by=record.created_by,
        starred=bool(record.starred),
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
        metadata=FileMetadata.from_dict(record.meta),
        revisions=revisions,
    )


class MetadataStore:
    """
    Typed wrapper around the relational metadata store.

    Usage:
        store = MetadataStore(init_db("sqlite:///docvault.db", create_tables=True))
        folder = await store.get_folder(owner_id, folder_id)
    """

    FOLDER_FIELDS = frozenset({"name", "parent_id", "path", "starred", "updated_at"})
    FILE_FIELDS = frozenset({
        "name", "folder_id", "path", "file_type", "size", "storage_path",
        "public_url", "thumbnail", "starred", "metadata", "updated_at",
    })

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    async def _run(
        self,
        operation: str,
        fn: Callable[[Session], T],
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> T:
        """Run ``fn`` inside a committed session on a worker thread."""

        def call() -> T:
            with session_scope(self._session_factory) as session:
                return fn(session)

        try:
            return await asyncio.to_thread(call)
        except SQLAlchemyError as e:
            logger.error(f"Metadata store {operation} failed ({entity_type} {entity_id}): {e}")
            raise StoreError(
                f"Metadata store operation '{operation}' failed: {e}",
                operation=operation,
                entity_type=entity_type,
                entity_id=entity_id,
            ) from e

    # -------------------------------------------------------------------
    # Folders
    # -------------------------------------------------------------------

    async def get_folder(self, owner_id: str, folder_id: str) -> Optional[Folder]:
        def op(session: Session) -> Optional[Folder]:
            record = session.execute(
                select(FolderRecord).where(
                    FolderRecord.id == folder_id,
                    FolderRecord.created_by == owner_id,
                )
            ).scalar_one_or_none()
            return folder_from_record(record) if record else None

        return await self._run("get_folder", op, "folder", folder_id)

    async def find_root_folder(self, owner_id: str, name: str) -> Optional[Folder]:
        """Oldest parentless folder with ``name`` owned by ``owner_id``."""

        def op(session: Session) -> Optional[Folder]:
            record = session.execute(
                select(FolderRecord)
                .where(
                    FolderRecord.parent_id.is_(None),
                    FolderRecord.created_by == owner_id,
                    FolderRecord.name == name,
                )
                .order_by(FolderRecord.created_at)
                .limit(1)
            ).scalar_one_or_none()
            return folder_from_record(record) if record else None

        return await self._run("find_root_folder", op, "folder")

    async def list_folders_by_parent(self, owner_id: str, parent_id: Optional[str]) -> List[Folder]:
        def op(session: Session) -> List[Folder]:
            parent_filter = (
                FolderRecord.parent_id.is_(None)
                if parent_id is None
                else FolderRecord.parent_id == parent_id
            )
            records = session.execute(
                select(FolderRecord)
                .where(parent_filter, FolderRecord.created_by == owner_id)
                .order_by(FolderRecord.name)
            ).scalars().all()
            return [folder_from_record(r) for r in records]

        return await self._run("list_folders_by_parent", op, "folder", parent_id)

    async def insert_folder(self, folder: Folder) -> Folder:
        def op(session: Session) -> Folder:
            now = utcnow()
            record = FolderRecord(
                id=folder.id,
                name=folder.name,
                parent_id=folder.parent_id,
                path=folder.path,
                created_by=folder.created_by,
                starred=folder.starred,
                created_at=folder.created_at or now,
                updated_at=folder.updated_at or now,
            )
            session.add(record)
            session.flush()
            return folder_from_record(record)

        return await self._run("insert_folder", op, "folder", folder.id)

    async def update_folder(
        self,
        owner_id: str,
        folder_id: str,
        touch: bool = True,
        **changes: Any,
    ) -> Optional[Folder]:
        """
        Apply ``changes`` to one folder. ``touch`` bumps ``updated_at``.

        Returns the updated folder, or None when it does not exist for
        this owner.
        """
        unknown = set(changes) - self.FOLDER_FIELDS
        if unknown:
            raise ValueError(f"Unknown folder fields: {sorted(unknown)}")
        if touch:
            changes.setdefault("updated_at", utcnow())

        def op(session: Session) -> Optional[Folder]:
            record = session.execute(
                select(FolderRecord).where(
                    FolderRecord.id == folder_id,
                    FolderRecord.created_by == owner_id,
                )
            ).scalar_one_or_none()
            if record is None:
                return None
            for key, value in changes.items():
                setattr(record, key, value)
            session.flush()
            return folder_from_record(record)

        return await self._run("update_folder", op, "folder", folder_id)

    async def delete_folder(self, owner_id: str, folder_id: str) -> bool:
        def op(session: Session) -> bool:
            record = session.execute(
                select(FolderRecord).where(
                    FolderRecord.id == folder_id,
                    FolderRecord.created_by == owner_id,
                )
            ).scalar_one_or_none()
            if record is None:
                return False
            session.delete(record)
            return True

        return await self._run("delete_folder", op, "folder", folder_id)

    # -------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------

    async def get_file(self, owner_id: str, file_id: str) -> Optional[File]:
        def op(session: Session) -> Optional[File]:
            record = session.execute(
                select(FileRecord).where(
                    FileRecord.id == file_id,
                    FileRecord.created_by == owner_id,
                )
            ).scalar_one_or_none()
            return file_from_record(record) if record else None

        return await self._run("get_file", op, "file", file_id)

    async def list_files_by_folder(self, owner_id: str, folder_id: str) -> List[File]:
        def op(session: Session) -> List[File]:
            records = session.execute(
                select(FileRecord)
                .where(FileRecord.folder_id == folder_id, FileRecord.created_by == owner_id)
                .order_by(FileRecord.name)
            ).scalars().all()
            return [file_from_record(r) for r in records]

        return await self._run("list_files_by_folder", op, "folder", folder_id)

    async def find_files_by_name(self, owner_id: str, folder_id: str, name: str) -> List[File]:
        def op(session: Session) -> List[File]:
            records = session.execute(
                select(FileRecord)
                .where(
                    FileRecord.folder_id == folder_id,
                    FileRecord.name == name,
                    FileRecord.created_by == owner_id,
                )
                .order_by(FileRecord.created_at)
            ).scalars().all()
            return [file_from_record(r) for r in records]

        return await self._run("find_files_by_name", op, "folder", folder_id)

    async def list_files(
        self,
        owner_id: str,
        starred: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> List[File]:
        """All files of ``owner_id``, most recently updated first."""

        def op(session: Session) -> List[File]:
            query = select(FileRecord).where(FileRecord.created_by == owner_id)
            if starred is not None:
                query = query.where(FileRecord.starred.is_(starred))
            query = query.order_by(FileRecord.updated_at.desc())
            if limit is not None:
                query = query.limit(limit)
            return [file_from_record(r) for r in session.execute(query).scalars().all()]

        return await self._run("list_files", op, "file")

    async def list_starred_folders(self, owner_id: str) -> List[Folder]:
        def op(session: Session) -> List[Folder]:
            records = session.execute(
                select(FolderRecord)
                .where(FolderRecord.created_by == owner_id, FolderRecord.starred.is_(True))
                .order_by(FolderRecord.updated_at.desc())
            ).scalars().all()
            return [folder_from_record(r) for r in records]

        return await self._run("list_starred_folders", op, "folder")

    async def insert_file(self, file: File) -> File:
        def op(session: Session) -> File:
            now = utcnow()
            record = FileRecord(
                id=file.id,
                name=file.name,
                folder_id=file.folder_id,
                path=file.path,
                file_type=file.file_type,
                size=file.size,
                storage_path=file.storage_path,
                public_url=file.public_url,
                thumbnail=file.thumbnail,
                created_by=file.created_by,
                starred=file.starred,
                created_at=file.created_at or now,
                updated_at=file.updated_at or now,
                meta=file.metadata.to_dict(),
            )
            session.add(record)
            session.flush()
            return file_from_record(record, with_revisions=False)

        return await self._run("insert_file", op, "file", file.id)

    async def update_file(
        self,
        owner_id: str,
        file_id: str,
        touch: bool = True,
        **changes: Any,
    ) -> Optional[File]:
        """
        Apply ``changes`` to one file. ``metadata`` accepts a FileMetadata
        or a plain dict and replaces the stored bag.
        """
        unknown = set(changes) - self.FILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown file fields: {sorted(unknown)}")
        if "metadata" in changes:
            meta = changes.pop("metadata")
            changes["meta"] = meta.to_dict() if isinstance(meta, FileMetadata) else dict(meta)
        if touch:
            changes.setdefault("updated_at", utcnow())

        def op(session: Session) -> Optional[File]:
            record = session.execute(
                select(FileRecord).where(
                    FileRecord.id == file_id,
                    FileRecord.created_by == owner_id,
                )
            ).scalar_one_or_none()
            if record is None:
                return None
            for key, value in changes.items():
                setattr(record, key, value)
            session.flush()
            return file_from_record(record)

        return await self._run("update_file", op, "file", file_id)

    async def delete_file(self, owner_id: str, file_id: str) -> bool:
        def op(session: Session) -> bool:
            record = session.execute(
                select(FileRecord).where(
                    FileRecord.id == file_id,
                    FileRecord.created_by == owner_id,
                )
            ).scalar_one_or_none()
            if record is None:
                return False
            session.delete(record)
            return True

        return await self._run("delete_file", op, "file", file_id)

    # -------------------------------------------------------------------
    # Revisions
    # -------------------------------------------------------------------

    async def list_revisions(self, owner_id: str, file_id: str) -> List[FileRevision]:
        def op(session: Session) -> List[FileRevision]:
            records = session.execute(
                select(FileRevisionRecord)
                .where(
                    FileRevisionRecord.file_id == file_id,
                    FileRevisionRecord.created_by == owner_id,
                )
                .order_by(FileRevisionRecord.created_at)
            ).scalars().all()
            return [revision_from_record(r) for r in records]

        return await self._run("list_revisions", op, "file", file_id)

    async def get_latest_revision(self, owner_id: str, file_id: str) -> Optional[FileRevision]:
        def op(session: Session) -> Optional[FileRevision]:
            record = session.execute(
                select(FileRevisionRecord)
                .where(
                    FileRevisionRecord.file_id == file_id,
                    FileRevisionRecord.created_by == owner_id,
                )
                .order_by(FileRevisionRecord.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            return revision_from_record(record) if record else None

        return await self._run("get_latest_revision", op, "file", file_id)

    async def insert_revision(self, revision: FileRevision) -> FileRevision:
        def op(session: Session) -> FileRevision:
            record = FileRevisionRecord(
                id=revision.id,
                file_id=revision.file_id,
                version=revision.version,
                changes=revision.changes,
                thumbnail=revision.thumbnail,
                created_by=revision.created_by,
                created_at=revision.created_at,
            )
            session.add(record)
            session.flush()
            return revision_from_record(record)

        return await self._run("insert_revision", op, "revision", revision.id)

    async def delete_revisions(self, owner_id: str, file_id: str) -> int:
        def op(session: Session) -> int:
            records = session.execute(
                select(FileRevisionRecord).where(
                    FileRevisionRecord.file_id == file_id,
                    FileRevisionRecord.created_by == owner_id,
                )
            ).scalars().all()
            for record in records:
                session.delete(record)
            return len(records)

        return await self._run("delete_revisions", op, "file", file_id)

    # -------------------------------------------------------------------
    # Path propagation support
    # -------------------------------------------------------------------

    async def find_by_path_prefix(
        self,
        owner_id: str,
        prefix: str,
    ) -> Tuple[List[Folder], List[File]]:
        """Folders and files whose path lies strictly below ``prefix``."""
        pattern = _escape_like(prefix + PATH_SEPARATOR) + "%"
        marker = prefix + PATH_SEPARATOR

        def op(session: Session) -> Tuple[List[Folder], List[File]]:
            folders = session.execute(
                select(FolderRecord).where(
                    FolderRecord.created_by == owner_id,
                    FolderRecord.path.like(pattern, escape=LIKE_ESCAPE),
                )
            ).scalars().all()
            files = session.execute(
                select(FileRecord).where(
                    FileRecord.created_by == owner_id,
                    FileRecord.path.like(pattern, escape=LIKE_ESCAPE),
                )
            ).scalars().all()
            # LIKE is case-insensitive on some backends
            return (
                [folder_from_record(r) for r in folders if r.path.startswith(marker)],
                [file_from_record(r, with_revisions=False) for r in files if r.path.startswith(marker)],
            )

        return await self._run("find_by_path_prefix", op, "folder")
