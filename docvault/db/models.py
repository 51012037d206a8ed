"""
DocVault metadata tables — folders, files, file_revisions.

Every row is scoped by ``created_by``. ``files.folder_id`` is non-null,
``folders.parent_id`` is nullable (null marks a per-user root).
"""

from __future__ import annotations

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from docvault.db.base import Base, OwnedMixin, utcnow


class FolderRecord(OwnedMixin, Base):
    __tablename__ = "folders"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    parent_id = Column(String(36), ForeignKey("folders.id"), nullable=True, index=True)
    path = Column(Text, nullable=False)

    __table_args__ = (
        Index("ix_folders_owner_path", "created_by", "path"),
    )

    def __repr__(self) -> str:
        return f"<FolderRecord {self.id} path='{self.path}'>"


class FileRecord(OwnedMixin, Base):
    __tablename__ = "files"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    folder_id = Column(String(36), ForeignKey("folders.id"), nullable=False, index=True)
    path = Column(Text, nullable=False)
    file_type = Column(String(32), nullable=False, default="")
    size = Column(BigInteger, nullable=False, default=0)
    storage_path = Column(String(500), nullable=True)
    public_url = Column(Text, nullable=True)
    thumbnail = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)

    revisions = relationship(
        "FileRevisionRecord",
        order_by="FileRevisionRecord.created_at",
        lazy="selectin",
        viewonly=True,
    )

    __table_args__ = (
        Index("ix_files_owner_path", "created_by", "path"),
        Index("ix_files_folder_name", "folder_id", "name"),
    )

    def __repr__(self) -> str:
        return f"<FileRecord {self.id} path='{self.path}'>"


class FileRevisionRecord(Base):
    __tablename__ = "file_revisions"

    id = Column(String(36), primary_key=True)
    file_id = Column(String(36), ForeignKey("files.id"), nullable=False, index=True)
    version = Column(String(64), nullable=False)
    changes = Column(Text, nullable=False, default="")
    thumbnail = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<FileRevisionRecord {self.file_id} v{self.version}>"
