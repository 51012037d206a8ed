"""
DocVault Folders, Files & Revisions.

Models and pure path/format helpers. The engine itself lives in
``docvault.documents.service`` (FileSystemService).
"""

from docvault.documents.models import (
    ConflictResolution,
    File,
    FileMetadata,
    FileRevision,
    Folder,
    FolderContents,
    UploadedFile,
)

__all__ = [
    "ConflictResolution",
    "File",
    "FileMetadata",
    "FileRevision",
    "Folder",
    "FolderContents",
    "UploadedFile",
]
