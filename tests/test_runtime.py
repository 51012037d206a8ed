"""Unit tests for docvault.engine.runtime — component wiring and lifecycle."""

from unittest.mock import MagicMock, patch

import pytest

from docvault.documents.models import UploadedFile
from docvault.engine.config import (
    DatabaseConfig,
    DocVaultConfig,
    EnrichmentConfig,
    FilesystemConfig,
    LoggingConfig,
    MinioConfig,
    StorageConfig,
)
from docvault.engine.logging import get_log_queue
from docvault.engine.runtime import DocVaultRuntime, create_blob_backend
from docvault.storage.blobs import LocalBlobBackend, MinioBlobBackend


@pytest.fixture
def runtime_config(tmp_path):
    return DocVaultConfig(
        database=DatabaseConfig(url=f"sqlite:///{tmp_path / 'runtime.db'}"),
        storage=StorageConfig(local_root=str(tmp_path / "blobs"), public_base_url="http://blobs.test"),
        filesystem=FilesystemConfig(root_folder_name="Home"),
        logging=LoggingConfig(directory=str(tmp_path / "logs")),
    )


class TestCreateBlobBackend:
    def test_local(self, tmp_path):
        backend = create_blob_backend(StorageConfig(local_root=str(tmp_path)))
        assert isinstance(backend, LocalBlobBackend)

    def test_minio(self):
        storage = StorageConfig(backend="minio", minio=MinioConfig(endpoint="minio.test:9000"))
        with patch("minio.Minio") as minio_cls:
            backend = create_blob_backend(storage)
        assert isinstance(backend, MinioBlobBackend)
        assert minio_cls.call_args.args[0] == "minio.test:9000"
        assert backend.public_url("documents", "u/a.pdf") == "http://minio.test:9000/documents/u/a.pdf"


class TestDocVaultRuntime:
    @pytest.mark.asyncio
    async def test_startup_and_shutdown(self, runtime_config, tmp_path):
        runtime = DocVaultRuntime(runtime_config)
        await runtime.startup()
        try:
            assert runtime.started is True
            assert get_log_queue() is not None
            assert (tmp_path / "blobs" / "documents").is_dir()

            health = runtime.health()
            assert health["database"] is True
            assert health["storage_backend"] == "local"
            assert health["enrichment_enabled"] is False
            assert health["pending_enrichment"] == 0
        finally:
            await runtime.shutdown()

        assert runtime.started is False
        assert get_log_queue() is None

    @pytest.mark.asyncio
    async def test_service_is_wired(self, runtime_config):
        runtime = DocVaultRuntime(runtime_config, enable_log_queue=False)
        await runtime.startup()
        try:
            root = await runtime.service.bootstrap_root("u1")
            assert root.path == "/Home"
            file = await runtime.service.upload_file("u1", UploadedFile("a.txt", b"hi"))
            assert file.public_url.startswith("http://blobs.test/documents/u1/")
        finally:
            await runtime.shutdown()

    @pytest.mark.asyncio
    async def test_startup_tolerates_unready_storage(self, runtime_config):
        backend = MagicMock()
        backend.container_exists.side_effect = ConnectionError("unreachable")
        runtime = DocVaultRuntime(runtime_config, blob_backend=backend, enable_log_queue=False)
        await runtime.startup()
        assert runtime.started is True
        await runtime.shutdown()

    @pytest.mark.asyncio
    async def test_notifier_from_config(self, runtime_config):
        runtime_config.enrichment = EnrichmentConfig(webhook_url="http://worker.test/process")
        runtime = DocVaultRuntime(runtime_config, enable_log_queue=False)
        assert runtime.notifier.enabled is True
        assert runtime.service.notifier is runtime.notifier

    @pytest.mark.asyncio
    async def test_shutdown_without_startup_is_noop(self, runtime_config):
        runtime = DocVaultRuntime(runtime_config, enable_log_queue=False)
        await runtime.shutdown()
        assert runtime.started is False

    @pytest.mark.asyncio
    async def test_double_startup(self, runtime_config):
        runtime = DocVaultRuntime(runtime_config, enable_log_queue=False)
        await runtime.startup()
        await runtime.startup()
        assert runtime.started is True
        await runtime.shutdown()

    def test_cleanup_logs_before_startup(self, runtime_config):
        runtime = DocVaultRuntime(runtime_config, enable_log_queue=False)
        assert runtime.cleanup_logs() == {}
