"""
DocVault Runtime — wires config, metadata DB, blob backend, enrichment
notifier and the FileSystemService together.

Lifecycle:
    runtime = DocVaultRuntime(load_config())
    await runtime.startup()    # log queue, blob container
    service = runtime.service
    ...
    await runtime.shutdown()   # background tasks, httpx client, logs, engines
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from docvault.db.base import engine_registry
from docvault.db.session import ENGINE_NAME, init_db
from docvault.documents.service import FileSystemService
from docvault.enrichment.notifier import EnrichmentNotifier
from docvault.engine.config import DocVaultConfig, StorageConfig, get_config
from docvault.engine.logging import (
    AsyncLogQueue,
    LogRetentionManager,
    init_logging,
    log,
    log_system_event,
    shutdown_logging,
)
from docvault.storage.blobs import BlobBackend, BlobStore, LocalBlobBackend, MinioBlobBackend
from docvault.storage.metadata import MetadataStore

logger = logging.getLogger("docvault.engine.runtime")


def create_blob_backend(storage: StorageConfig) -> BlobBackend:
    """Instantiate the backend named by ``storage.backend``."""
    if storage.backend == "minio":
        from minio import Minio

        cfg = storage.minio
        client = Minio(
            cfg.endpoint,
            access_key=cfg.access_key,
            secret_key=cfg.secret_key,
            secure=cfg.secure,
        )
        scheme = "https" if cfg.secure else "http"
        return MinioBlobBackend(client, public_base_url=storage.public_base_url or f"{scheme}://{cfg.endpoint}")
    return LocalBlobBackend(Path(storage.local_root), public_base_url=storage.public_base_url)


class DocVaultRuntime:
    """
    Owns every long-lived resource of one DocVault process.

    Components are built eagerly in __init__ so tests can inject a
    backend or notifier; startup() only starts background machinery.
    """

    def __init__(
        self,
        config: Optional[DocVaultConfig] = None,
        blob_backend: Optional[BlobBackend] = None,
        notifier: Optional[EnrichmentNotifier] = None,
        enable_log_queue: bool = True,
    ):
        self.config = config or get_config()
        self._enable_log_queue = enable_log_queue

        db = self.config.database
        self.session_factory = init_db(
            db.url,
            create_tables=db.create_tables,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            pool_recycle=db.pool_recycle,
            pool_pre_ping=db.pool_pre_ping,
        )
        self.metadata = MetadataStore(self.session_factory)

        storage = self.config.storage
        self.blobs = BlobStore(
            blob_backend or create_blob_backend(storage),
            container=storage.container,
            size_limit=storage.size_limit_bytes,
            public=storage.public,
        )

        enrichment = self.config.enrichment
        self.notifier = notifier or EnrichmentNotifier(
            enrichment.webhook_url,
            timeout=enrichment.timeout_seconds,
            supported_types=enrichment.supported_types,
        )

        self.service = FileSystemService(
            self.metadata, self.blobs, self.notifier, config=self.config.filesystem,
        )

        self.log_queue: Optional[AsyncLogQueue] = None
        self.retention_manager: Optional[LogRetentionManager] = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def startup(self) -> None:
        if self._started:
            logger.warning("Runtime already started")
            return

        logger.info(f"Starting {self.config.name} runtime ({self.config.environment})...")
        log_cfg = self.config.logging
        if self._enable_log_queue:
            self.log_queue = init_logging(
                log_dir=log_cfg.directory,
                flush_interval_ms=log_cfg.async_queue.flush_interval_ms,
                flush_batch_size=log_cfg.async_queue.flush_batch_size,
                max_queue_size=log_cfg.async_queue.max_queue_size,
            )
        self.retention_manager = LogRetentionManager(
            log_dir=log_cfg.directory,
            retention_days={
                "execution": log_cfg.retention.execution_days,
                "performance": log_cfg.retention.performance_days,
                "security": log_cfg.retention.security_days,
            },
            compress_after_days=log_cfg.compress_after_days,
        )

        storage_ready = await self.service.initialize_storage()
        if not storage_ready:
            logger.warning(f"Blob container '{self.blobs.container}' not ready; uploads will retry provisioning")

        self._started = True
        log(log_system_event("runtime_started", details=self.health()))
        logger.info("DocVault runtime started")

    async def shutdown(self) -> None:
        if not self._started:
            return

        logger.info("Shutting down DocVault runtime...")
        await self.service.wait_for_background_tasks()
        await self.notifier.aclose()

        log(log_system_event("runtime_shutdown"))
        if self.log_queue is not None:
            shutdown_logging()
            self.log_queue = None

        engine_registry.dispose(ENGINE_NAME)
        self._started = False
        logger.info("DocVault runtime shut down")

    def cleanup_logs(self) -> Dict[str, int]:
        """Apply log retention. Returns {"deleted": n, "compressed": m}."""
        if self.retention_manager is None:
            return {}
        return self.retention_manager.cleanup()

    def health(self) -> Dict[str, Any]:
        return {
            "database": engine_registry.health_check(ENGINE_NAME),
            "storage_backend": self.config.storage.backend,
            "container": self.blobs.container,
            "enrichment_enabled": self.notifier.enabled,
            "pending_enrichment": self.service.pending_background_tasks,
        }
