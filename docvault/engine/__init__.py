"""DocVault Engine — errors, config, structured logging, runtime."""

from docvault.engine.errors import (  # noqa: F401
    ConflictError,
    DocVaultError,
    InvalidOperationError,
    NotFoundError,
    StoreError,
    UploadError,
)

__all__ = [
    "DocVaultError",
    "NotFoundError",
    "InvalidOperationError",
    "UploadError",
    "ConflictError",
    "StoreError",
]
