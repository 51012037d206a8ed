"""
DocVault Blob Store — raw file bytes in object storage.

Two backends implement the same synchronous contract:
    LocalBlobBackend — a directory tree on disk (dev and tests)
    MinioBlobBackend — an S3-compatible bucket via the minio client

BlobStore wraps a backend with the async surface the engine uses. Backend
calls run in worker threads; upload retries once with an alternate byte
representation before raising UploadError.
"""

from __future__ import annotations

import asyncio
import io
import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, BinaryIO, Callable, Optional, Union

from docvault.engine.config import DEFAULT_CONTAINER, DEFAULT_SIZE_LIMIT
from docvault.engine.errors import NotFoundError, StoreError, UploadError
from docvault.engine.logging import log, log_storage_operation

logger = logging.getLogger("docvault.storage.blobs")

BlobData = Union[bytes, BinaryIO]
ProgressCallback = Callable[[int], Any]


def _read_all(data: BlobData) -> bytes:
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    return data.read()


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class BlobBackend(ABC):
    """Synchronous object storage contract. Keys are opaque strings."""

    @abstractmethod
    def container_exists(self, container: str) -> bool: ...

    @abstractmethod
    def create_container(self, container: str, public: bool = True) -> None: ...

    @abstractmethod
    def put(self, container: str, key: str, data: BlobData, content_type: str) -> None: ...

    @abstractmethod
    def get(self, container: str, key: str) -> bytes: ...

    @abstractmethod
    def remove(self, container: str, key: str) -> None: ...

    @abstractmethod
    def public_url(self, container: str, key: str) -> Optional[str]: ...


class ContainerExistsError(Exception):
    """Raised by a backend when the container is already provisioned."""


class LocalBlobBackend(BlobBackend):
    """
    Blobs as files under ``root/<container>/<key>``.

    Public URLs use ``public_base_url`` when configured, otherwise a
    ``file://`` URI of the stored file.
    """

    def __init__(self, root: Union[str, Path], public_base_url: Optional[str] = None):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def _path(self, container: str, key: str) -> Path:
        path = (self.root / container / key).resolve()
        base = (self.root / container).resolve()
        if base not in path.parents:
            raise ValueError(f"Blob key escapes container: {key}")
        return path

    def container_exists(self, container: str) -> bool:
        return (self.root / container).is_dir()

    def create_container(self, container: str, public: bool = True) -> None:
        path = self.root / container
        if path.is_dir():
            raise ContainerExistsError(container)
        path.mkdir(parents=True)

    def put(self, container: str, key: str, data: BlobData, content_type: str) -> None:
        path = self._path(container, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(_read_all(data))

    def get(self, container: str, key: str) -> bytes:
        path = self._path(container, key)
        if not path.is_file():
            raise NotFoundError(f"Blob not found: {key}", entity_type="blob", entity_id=key)
        return path.read_bytes()

    def remove(self, container: str, key: str) -> None:
        path = self._path(container, key)
        if not path.is_file():
            raise NotFoundError(f"Blob not found: {key}", entity_type="blob", entity_id=key)
        path.unlink()

    def public_url(self, container: str, key: str) -> Optional[str]:
        if self.public_base_url:
            return f"{self.public_base_url}/{container}/{key}"
        return self._path(container, key).as_uri()


class MinioBlobBackend(BlobBackend):
    """
    Blobs in a MinIO / S3 bucket.

    Usage:
        client = Minio("localhost:9000", access_key="...", secret_key="...", secure=False)
        backend = MinioBlobBackend(client, public_base_url="http://localhost:9000")
    """

    def __init__(self, client: Any, public_base_url: Optional[str] = None):
        self.client = client
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    @staticmethod
    def public_read_policy(container: str) -> str:
        return json.dumps({
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"AWS": ["*"]},
                    "Action": ["s3:GetObject"],
                    "Resource": [f"arn:aws:s3:::{container}/*"],
                }
            ],
        })

    def container_exists(self, container: str) -> bool:
        return self.client.bucket_exists(container)

    def create_container(self, container: str, public: bool = True) -> None:
        from minio.error import S3Error

        try:
            self.client.make_bucket(container)
        except S3Error as e:
            if e.code in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                raise ContainerExistsError(container) from e
            raise
        if public:
            self.client.set_bucket_policy(container, self.public_read_policy(container))

    def put(self, container: str, key: str, data: BlobData, content_type: str) -> None:
        if isinstance(data, (bytes, bytearray, memoryview)):
            payload = bytes(data)
            stream: BinaryIO = io.BytesIO(payload)
            length = len(payload)
        else:
            stream = data
            start = stream.tell()
            stream.seek(0, io.SEEK_END)
            length = stream.tell() - start
            stream.seek(start)
        self.client.put_object(container, key, stream, length, content_type=content_type)

    def get(self, container: str, key: str) -> bytes:
        from minio.error import S3Error

        try:
            response = self.client.get_object(container, key)
        except S3Error as e:
            if e.code == "NoSuchKey":
                raise NotFoundError(f"Blob not found: {key}", entity_type="blob", entity_id=key) from e
            raise
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    def remove(self, container: str, key: str) -> None:
        self.client.remove_object(container, key)

    def public_url(self, container: str, key: str) -> Optional[str]:
        if not self.public_base_url:
            return None
        return f"{self.public_base_url}/{container}/{key}"


# ---------------------------------------------------------------------------
# Async adapter
# ---------------------------------------------------------------------------

class BlobStore:
    """
    Async blob operations against one fixed container.

    Usage:
        store = BlobStore(LocalBlobBackend(".docvault/blobs"))
        await store.ensure_container_exists()
        await store.upload(key, data, "application/pdf", on_progress=print)
    """

    def __init__(
        self,
        backend: BlobBackend,
        container: str = DEFAULT_CONTAINER,
        size_limit: int = DEFAULT_SIZE_LIMIT,
        public: bool = True,
    ):
        self.backend = backend
        self.container = container
        self.size_limit = size_limit
        self.public = public
        self._container_ready = False

    @staticmethod
    def make_key(owner_id: str, file_id: str, extension: str) -> str:
        """``owner/file_id.ext``; the dot is omitted when there is no extension."""
        if extension:
            return f"{owner_id}/{file_id}.{extension}"
        return f"{owner_id}/{file_id}"

    async def ensure_container_exists(self) -> bool:
        """
        Provision the container if missing. An "already exists" answer
        counts as success; any other failure is logged and reported as False.
        """
        if self._container_ready:
            return True
        try:
            if not await asyncio.to_thread(self.backend.container_exists, self.container):
                await asyncio.to_thread(self.backend.create_container, self.container, self.public)
                logger.info(f"Created blob container '{self.container}' (public={self.public})")
                log(log_storage_operation("create_container", key="", container=self.container))
        except ContainerExistsError:
            logger.debug(f"Blob container '{self.container}' already exists")
        except Exception as e:
            logger.warning(f"Could not ensure blob container '{self.container}': {e}")
            log(log_storage_operation(
                "create_container", key="", container=self.container, success=False, error=str(e),
            ))
            return False
        self._container_ready = True
        return True

    async def upload(
        self,
        key: str,
        data: bytes,
        content_type: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Store ``data`` under ``key``. The first attempt sends the raw
        buffer, the retry sends a stream over the same bytes.

        Raises:
            UploadError: both attempts failed or the payload exceeds the size limit.
        """
        if len(data) > self.size_limit:
            raise UploadError(
                f"Blob of {len(data)} bytes exceeds the {self.size_limit} byte limit",
                storage_path=key,
                attempts=0,
            )

        start = time.monotonic()
        attempts = [("buffer", lambda: data), ("stream", lambda: io.BytesIO(data))]
        last_error: Optional[Exception] = None
        for attempt, (label, payload) in enumerate(attempts, start=1):
            try:
                await asyncio.to_thread(self.backend.put, self.container, key, payload(), content_type)
            except Exception as e:
                last_error = e
                logger.warning(f"Blob upload attempt {attempt} ({label}) failed for {key}: {e}")
                continue
            if on_progress is not None:
                on_progress(100)
            duration_ms = (time.monotonic() - start) * 1000
            logger.debug(f"Uploaded blob {key} ({len(data)} bytes) in {duration_ms:.1f}ms")
            log(log_storage_operation(
                "upload", key=key, container=self.container, attempts=attempt, size=len(data),
            ))
            return key

        log(log_storage_operation(
            "upload", key=key, container=self.container, success=False,
            attempts=len(attempts), size=len(data), error=str(last_error),
        ))
        raise UploadError(
            f"Upload of {key} failed after {len(attempts)} attempts: {last_error}",
            storage_path=key,
            attempts=len(attempts),
        ) from last_error

    async def download(self, key: str) -> bytes:
        """
        Raises:
            NotFoundError: no blob under ``key``.
            StoreError: the backend failed to read it.
        """
        try:
            return await asyncio.to_thread(self.backend.get, self.container, key)
        except NotFoundError:
            raise
        except Exception as e:
            logger.error(f"Blob download failed for {key}: {e}")
            raise StoreError(
                f"Download of {key} failed: {e}",
                operation="download", entity_type="blob", entity_id=key,
            ) from e

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self.backend.remove, self.container, key)
        log(log_storage_operation("delete", key=key, container=self.container))

    async def get_public_url(self, key: str) -> Optional[str]:
        """Public URL for ``key``, or None when the backend cannot produce one."""
        try:
            return await asyncio.to_thread(self.backend.public_url, self.container, key)
        except Exception as e:
            logger.warning(f"Could not resolve public URL for {key}: {e}")
            return None
