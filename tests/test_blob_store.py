"""Unit tests for docvault.storage.blobs — backends and the async BlobStore adapter."""

import io
import json
from unittest.mock import MagicMock

import pytest
from minio.error import S3Error

from docvault.engine.errors import NotFoundError, UploadError
from docvault.storage.blobs import (
    BlobStore,
    ContainerExistsError,
    LocalBlobBackend,
    MinioBlobBackend,
)


class _FakeS3Error(S3Error):
    """S3Error with only its code populated."""

    def __init__(self, code):
        Exception.__init__(self, code)
        self._fake_code = code

    @property
    def code(self):
        return self._fake_code

    def __str__(self):
        return f"S3 operation failed; code: {self._fake_code}"


def _s3_error(code):
    return _FakeS3Error(code)


class TestLocalBlobBackend:
    def test_put_get_remove(self, tmp_path):
        backend = LocalBlobBackend(tmp_path)
        backend.create_container("documents")
        backend.put("documents", "u1/a.pdf", b"data", "application/pdf")
        assert (tmp_path / "documents" / "u1" / "a.pdf").read_bytes() == b"data"
        assert backend.get("documents", "u1/a.pdf") == b"data"
        backend.remove("documents", "u1/a.pdf")
        with pytest.raises(NotFoundError):
            backend.get("documents", "u1/a.pdf")

    def test_put_accepts_stream(self, tmp_path):
        backend = LocalBlobBackend(tmp_path)
        backend.put("documents", "k", io.BytesIO(b"streamed"), "text/plain")
        assert backend.get("documents", "k") == b"streamed"

    def test_create_existing_container(self, tmp_path):
        backend = LocalBlobBackend(tmp_path)
        backend.create_container("documents")
        assert backend.container_exists("documents") is True
        with pytest.raises(ContainerExistsError):
            backend.create_container("documents")

    def test_key_cannot_escape_container(self, tmp_path):
        backend = LocalBlobBackend(tmp_path)
        with pytest.raises(ValueError):
            backend.put("documents", "../outside", b"x", "text/plain")

    def test_public_url(self, tmp_path):
        assert LocalBlobBackend(tmp_path, "http://cdn/").public_url("documents", "u/a.pdf") == "http://cdn/documents/u/a.pdf"
        assert LocalBlobBackend(tmp_path).public_url("documents", "u/a.pdf").startswith("file://")

    def test_remove_missing(self, tmp_path):
        with pytest.raises(NotFoundError):
            LocalBlobBackend(tmp_path).remove("documents", "nope")


class TestMinioBlobBackend:
    def test_create_sets_public_policy(self):
        client = MagicMock()
        MinioBlobBackend(client).create_container("documents", public=True)
        client.make_bucket.assert_called_once_with("documents")
        bucket, policy = client.set_bucket_policy.call_args.args
        assert bucket == "documents"
        statement = json.loads(policy)["Statement"][0]
        assert statement["Action"] == ["s3:GetObject"]
        assert statement["Resource"] == ["arn:aws:s3:::documents/*"]

    def test_private_container_has_no_policy(self):
        client = MagicMock()
        MinioBlobBackend(client).create_container("documents", public=False)
        client.set_bucket_policy.assert_not_called()

    @pytest.mark.parametrize("code", ["BucketAlreadyOwnedByYou", "BucketAlreadyExists"])
    def test_already_exists_codes(self, code):
        client = MagicMock()
        client.make_bucket.side_effect = _s3_error(code)
        with pytest.raises(ContainerExistsError):
            MinioBlobBackend(client).create_container("documents")

    def test_other_s3_errors_propagate(self):
        client = MagicMock()
        client.make_bucket.side_effect = _s3_error("AccessDenied")
        with pytest.raises(S3Error):
            MinioBlobBackend(client).create_container("documents")

    def test_put_bytes_and_stream(self):
        client = MagicMock()
        backend = MinioBlobBackend(client)
        backend.put("documents", "k", b"abc", "text/plain")
        args = client.put_object.call_args
        assert args.args[0:2] == ("documents", "k")
        assert args.args[3] == 3
        assert args.kwargs["content_type"] == "text/plain"

        backend.put("documents", "k", io.BytesIO(b"abcde"), "text/plain")
        assert client.put_object.call_args.args[3] == 5

    def test_get_releases_connection(self):
        client = MagicMock()
        response = client.get_object.return_value
        response.read.return_value = b"payload"
        assert MinioBlobBackend(client).get("documents", "k") == b"payload"
        response.close.assert_called_once()
        response.release_conn.assert_called_once()

    def test_get_missing_key(self):
        client = MagicMock()
        client.get_object.side_effect = _s3_error("NoSuchKey")
        with pytest.raises(NotFoundError):
            MinioBlobBackend(client).get("documents", "k")

    def test_public_url(self):
        assert MinioBlobBackend(MagicMock(), "http://minio:9000").public_url("documents", "u/a") == \
            "http://minio:9000/documents/u/a"
        assert MinioBlobBackend(MagicMock()).public_url("documents", "u/a") is None


class TestBlobStore:
    def test_make_key(self):
        assert BlobStore.make_key("u1", "abc", "pdf") == "u1/abc.pdf"
        assert BlobStore.make_key("u1", "abc", "") == "u1/abc"

    @pytest.mark.asyncio
    async def test_ensure_container_idempotent(self, blob_store, blob_root):
        assert await blob_store.ensure_container_exists() is True
        assert (blob_root / "documents").is_dir()
        assert await blob_store.ensure_container_exists() is True

    @pytest.mark.asyncio
    async def test_ensure_container_tolerates_already_exists(self):
        backend = MagicMock()
        backend.container_exists.return_value = False
        backend.create_container.side_effect = ContainerExistsError("documents")
        assert await BlobStore(backend).ensure_container_exists() is True

    @pytest.mark.asyncio
    async def test_ensure_container_reports_other_failures(self):
        backend = MagicMock()
        backend.container_exists.side_effect = ConnectionError("unreachable")
        store = BlobStore(backend)
        assert await store.ensure_container_exists() is False
        # not cached: the next call tries again
        backend.container_exists.side_effect = None
        backend.container_exists.return_value = True
        assert await store.ensure_container_exists() is True

    @pytest.mark.asyncio
    async def test_upload_download_delete(self, blob_store):
        await blob_store.ensure_container_exists()
        progress = []
        key = await blob_store.upload("u1/a.txt", b"hello", "text/plain", on_progress=progress.append)
        assert key == "u1/a.txt"
        assert progress == [100]
        assert await blob_store.download("u1/a.txt") == b"hello"
        await blob_store.delete("u1/a.txt")
        with pytest.raises(NotFoundError):
            await blob_store.download("u1/a.txt")

    @pytest.mark.asyncio
    async def test_upload_retries_with_stream(self):
        backend = MagicMock()
        backend.put.side_effect = [IOError("reset"), None]
        key = await BlobStore(backend).upload("k", b"abc", "text/plain")
        assert key == "k"
        first, second = backend.put.call_args_list
        assert first.args[2] == b"abc"
        assert isinstance(second.args[2], io.BytesIO)
        assert second.args[2].getvalue() == b"abc"

    @pytest.mark.asyncio
    async def test_upload_fails_after_retry(self):
        backend = MagicMock()
        backend.put.side_effect = IOError("down")
        progress = []
        with pytest.raises(UploadError) as exc_info:
            await BlobStore(backend).upload("k", b"abc", "text/plain", on_progress=progress.append)
        assert exc_info.value.attempts == 2
        assert exc_info.value.storage_path == "k"
        assert backend.put.call_count == 2
        assert progress == []

    @pytest.mark.asyncio
    async def test_upload_over_size_limit(self):
        backend = MagicMock()
        with pytest.raises(UploadError):
            await BlobStore(backend, size_limit=2).upload("k", b"abc", "text/plain")
        backend.put.assert_not_called()

    @pytest.mark.asyncio
    async def test_public_url_best_effort(self):
        backend = MagicMock()
        backend.public_url.side_effect = RuntimeError("no url")
        assert await BlobStore(backend).get_public_url("k") is None
