"""DocVault storage adapters — relational metadata and blob bytes."""

from docvault.storage.blobs import BlobStore, LocalBlobBackend, MinioBlobBackend  # noqa: F401
from docvault.storage.metadata import MetadataStore  # noqa: F401

__all__ = ["BlobStore", "LocalBlobBackend", "MinioBlobBackend", "MetadataStore"]
