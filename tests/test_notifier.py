"""Unit tests for docvault.enrichment.notifier — webhook payloads and lenient parsing."""

import json

import httpx
import pytest

from docvault.enrichment.notifier import (
    EnrichmentNotifier,
    EnrichmentRequest,
    EnrichmentResult,
)

WEBHOOK = "http://worker.test/process"


def _notifier(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EnrichmentNotifier(WEBHOOK, client=client, **kwargs)


def _request(**overrides):
    data = {"fileId": "f1", "userId": "u1", "fileType": "pdf", "fileName": "a.pdf"}
    data.update(overrides)
    return EnrichmentRequest(**data)


class TestEnrichmentRequest:
    def test_payload_uses_camel_case_and_omits_none(self):
        payload = _request(storagePath="u1/f1.pdf").to_payload()
        assert payload == {
            "fileId": "f1",
            "userId": "u1",
            "fileType": "pdf",
            "fileName": "a.pdf",
            "storagePath": "u1/f1.pdf",
        }

    def test_populate_by_field_name(self):
        assert EnrichmentRequest(file_id="x").to_payload() == {"fileId": "x"}


class TestEnrichmentResult:
    def test_full_response(self):
        result = EnrichmentResult.from_response("f1", {
            "id": "f1",
            "name": "a.pdf",
            "processed": True,
            "extractedText": "Invoice 42",
            "metadata": {"pages": 2},
            "thumbnailUrl": "http://thumbs/f1.png",
        })
        assert result.processed is True
        assert result.extracted_text == "Invoice 42"
        assert result.metadata == {"pages": 2}
        assert result.thumbnail_url == "http://thumbs/f1.png"

    def test_missing_fields_default(self):
        result = EnrichmentResult.from_response("f1", {})
        assert result.id == "f1"
        assert result.processed is False
        assert result.extracted_text == ""
        assert result.metadata == {}
        assert result.thumbnail_url is None

    def test_wrong_types_degrade(self):
        result = EnrichmentResult.from_response("f1", {
            "processed": "yes",
            "extractedText": 12,
            "metadata": ["not", "a", "dict"],
            "thumbnailUrl": 5,
        })
        assert result.processed is False
        assert result.extracted_text == ""
        assert result.metadata == {}
        assert result.thumbnail_url is None

    def test_non_object_is_sentinel(self):
        result = EnrichmentResult.from_response("f1", ["x"])
        assert result.processed is False
        assert result.error


class TestEnrichmentNotifier:
    @pytest.mark.asyncio
    async def test_disabled_returns_none(self):
        notifier = EnrichmentNotifier(None)
        assert notifier.enabled is False
        assert await notifier.notify(_request()) is None

    @pytest.mark.asyncio
    async def test_posts_payload_and_parses(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "f1", "processed": True, "extractedText": "hi"})

        notifier = _notifier(handler)
        result = await notifier.notify(_request())
        assert seen["url"] == WEBHOOK
        assert seen["body"]["fileId"] == "f1"
        assert result.processed is True
        assert result.extracted_text == "hi"

    @pytest.mark.asyncio
    async def test_http_error_status_is_sentinel(self):
        notifier = _notifier(lambda request: httpx.Response(503, text="busy"))
        result = await notifier.notify(_request())
        assert result.processed is False
        assert result.id == "f1"
        assert "503" in result.error

    @pytest.mark.asyncio
    async def test_timeout_is_sentinel(self):
        def handler(request):
            raise httpx.ReadTimeout("slow worker", request=request)

        result = await _notifier(handler).notify(_request())
        assert result.processed is False

    @pytest.mark.asyncio
    async def test_network_error_is_sentinel(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await _notifier(handler).notify(_request())
        assert result.processed is False

    @pytest.mark.asyncio
    async def test_malformed_json_is_sentinel(self):
        notifier = _notifier(lambda request: httpx.Response(200, text="<html>oops</html>"))
        result = await notifier.notify(_request())
        assert result.processed is False

    def test_supports(self):
        notifier = EnrichmentNotifier(WEBHOOK, supported_types=["PDF", "txt"])
        assert notifier.supports("pdf") is True
        assert notifier.supports("TXT") is True
        assert notifier.supports("png") is False
        assert notifier.supports("") is False
        assert notifier.supports(None) is False

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))
        notifier = EnrichmentNotifier(WEBHOOK, client=client)
        await notifier.aclose()
        assert client.is_closed is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_aclose_closes_owned_client(self):
        notifier = EnrichmentNotifier(WEBHOOK)
        client = notifier._get_client()
        await notifier.aclose()
        assert client.is_closed is True
