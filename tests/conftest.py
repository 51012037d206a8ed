"""
DocVault Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v

Unit tests use a throwaway SQLite file and a LocalBlobBackend under
tmp_path; nothing touches Postgres, MinIO or the network.
"""

from __future__ import annotations

import uuid

import pytest

from docvault.db.base import engine_registry
from docvault.db.session import init_db
from docvault.documents.service import FileSystemService
from docvault.storage.blobs import BlobStore, LocalBlobBackend
from docvault.storage.metadata import MetadataStore


# ---------------------------------------------------------------------------
# Global singletons
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals(monkeypatch):
    """Reset config and log queue singletons between tests."""
    import docvault.engine.config as cfg_mod
    import docvault.engine.logging as log_mod

    cfg_mod._config = None
    log_mod._global_queue = None
    for name in (
        "DOCVAULT_DATABASE_URL",
        "DOCVAULT_ENRICHMENT_WEBHOOK_URL",
        "DOCVAULT_MINIO_ACCESS_KEY",
        "DOCVAULT_MINIO_SECRET_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
    if log_mod._global_queue is not None:
        log_mod.shutdown_logging()
    cfg_mod._config = None


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'docvault.db'}"


@pytest.fixture
def session_factory(db_url):
    """Session factory over a fresh SQLite file with all tables created."""
    name = f"test-{uuid.uuid4().hex[:8]}"
    factory = init_db(db_url, create_tables=True, engine_name=name)
    yield factory
    engine_registry.dispose(name)


@pytest.fixture
def metadata_store(session_factory):
    return MetadataStore(session_factory)


@pytest.fixture
def blob_root(tmp_path):
    return tmp_path / "blobs"


@pytest.fixture
def blob_backend(blob_root):
    return LocalBlobBackend(blob_root, public_base_url="http://blobs.test")


@pytest.fixture
def blob_store(blob_backend):
    return BlobStore(blob_backend)


@pytest.fixture
def service(metadata_store, blob_store):
    """FileSystemService without an enrichment notifier."""
    return FileSystemService(metadata_store, blob_store)


@pytest.fixture
def user_id():
    return "user-alice"


@pytest.fixture
def other_user_id():
    return "user-bob"
