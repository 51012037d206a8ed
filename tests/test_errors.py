"""Unit tests for docvault.engine.errors — Error hierarchy & serialization."""

import json
import pytest

from docvault.engine.errors import (
    ConflictError,
    DocVaultError,
    InvalidOperationError,
    NotFoundError,
    StoreError,
    UploadError,
)


class TestDocVaultError:
    """Base error class tests."""

    def test_basic_creation(self):
        err = DocVaultError("something broke")
        assert err.message == "something broke"
        assert str(err) == "something broke"
        assert err.error_type == "DocVaultError"
        assert err.entity_type is None
        assert err.entity_id is None
        assert err.user_id is None

    def test_context_fields(self):
        err = DocVaultError("fail", entity_type="folder", entity_id="f1", user_id="u1", extra=3)
        assert err.entity_type == "folder"
        assert err.entity_id == "f1"
        assert err.user_id == "u1"
        assert err.context["extra"] == 3

    def test_to_dict(self):
        err = DocVaultError("fail", entity_type="file", entity_id="x", size=10)
        d = err.to_dict()
        assert d["error_type"] == "DocVaultError"
        assert d["message"] == "fail"
        assert d["entity_id"] == "x"
        assert d["context"] == {"size": "10"}
        assert "timestamp" in d

    def test_to_json(self):
        parsed = json.loads(NotFoundError("gone").to_json())
        assert parsed["error_type"] == "NotFoundError"
        assert parsed["message"] == "gone"

    def test_repr(self):
        r = repr(NotFoundError("gone", entity_type="file", entity_id="abc"))
        assert "NotFoundError: gone" in r
        assert "entity_id=abc" in r


class TestSubclasses:
    @pytest.mark.parametrize("cls", [
        NotFoundError, InvalidOperationError, UploadError, ConflictError, StoreError,
    ])
    def test_all_inherit_from_base(self, cls):
        assert issubclass(cls, DocVaultError)
        with pytest.raises(DocVaultError):
            raise cls("boom")

    def test_upload_error_fields(self):
        err = UploadError("failed", storage_path="u/1.pdf", attempts=2)
        assert err.storage_path == "u/1.pdf"
        assert err.attempts == 2
        d = err.to_dict()
        assert d["storage_path"] == "u/1.pdf"
        assert d["attempts"] == 2

    def test_conflict_error_fields(self):
        err = ConflictError("exists", existing_file_id="f1", file_name="a.pdf", folder_id="d1")
        d = err.to_dict()
        assert d["existing_file_id"] == "f1"
        assert d["file_name"] == "a.pdf"
        assert d["folder_id"] == "d1"

    def test_store_error_orphaned_blob(self):
        err = StoreError("db down", operation="insert_file", orphaned_blob="u/1.pdf")
        assert err.operation == "insert_file"
        assert err.orphaned_blob == "u/1.pdf"
        assert err.to_dict()["orphaned_blob"] == "u/1.pdf"

    def test_store_error_defaults(self):
        err = StoreError("db down")
        assert err.orphaned_blob is None
        assert err.operation is None
