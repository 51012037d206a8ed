"""
DocVault Enrichment Notifier — Tells the external enrichment worker about
new uploads and parses what it sends back.

Flow:
    1. FileSystemService spawns notify() as a detached task after upload
    2. POST the EnrichmentRequest JSON to the configured webhook
    3. Parse the response leniently into an EnrichmentResult
    4. On any failure (network, timeout, bad JSON) return the unprocessed
       sentinel; callers merge it as a no-op

notify() never raises for transport problems. Uses httpx.AsyncClient,
one pooled client per notifier, closed via aclose().
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from docvault.engine.config import DEFAULT_ENRICHMENT_TYPES
from docvault.engine.logging import log, log_enrichment_event

logger = logging.getLogger("docvault.enrichment.notifier")

DEFAULT_TIMEOUT_SECONDS = 15.0


class EnrichmentRequest(BaseModel):
    """Outbound payload. Serialised with camelCase keys, unset fields omitted."""

    model_config = ConfigDict(populate_by_name=True)

    file_id: str = Field(alias="fileId")
    folder_id: Optional[str] = Field(default=None, alias="folderId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    file_type: Optional[str] = Field(default=None, alias="fileType")
    storage_path: Optional[str] = Field(default=None, alias="storagePath")
    public_url: Optional[str] = Field(default=None, alias="publicUrl")
    file_name: Optional[str] = Field(default=None, alias="fileName")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class EnrichmentResult(BaseModel):
    """
    What the worker extracted from a file.

    ``processed=False`` is the sentinel for "nothing usable came back".
    """

    id: str
    name: str = ""
    processed: bool = False
    extracted_text: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    thumbnail_url: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def unprocessed(cls, file_id: str, error: Optional[str] = None) -> "EnrichmentResult":
        return cls(id=file_id, processed=False, error=error)

    @classmethod
    def from_response(cls, file_id: str, body: Any) -> "EnrichmentResult":
        """
        Build a result from a decoded JSON body. Missing or wrongly typed
        fields fall back to defaults; a non-object body is the sentinel.
        """
        if not isinstance(body, dict):
            return cls.unprocessed(file_id, error="response body is not a JSON object")

        def text(key: str, default: str = "") -> str:
            value = body.get(key)
            return value if isinstance(value, str) else default

        metadata = body.get("metadata")
        thumbnail = body.get("thumbnailUrl")
        return cls(
            id=text("id", file_id) or file_id,
            name=text("name"),
            processed=body.get("processed") is True,
            extracted_text=text("extractedText"),
            metadata=metadata if isinstance(metadata, dict) else {},
            thumbnail_url=thumbnail if isinstance(thumbnail, str) and thumbnail else None,
        )


class EnrichmentNotifier:
    """
    Posts upload notifications to the enrichment webhook.

    Usage:
        notifier = EnrichmentNotifier("https://worker.internal/process", timeout=15)
        result = await notifier.notify(EnrichmentRequest(fileId=file.id, ...))
        await notifier.aclose()

    A notifier without a webhook URL is disabled: notify() returns None.
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        supported_types: Optional[Iterable[str]] = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.supported_types: List[str] = [
            t.lower() for t in (supported_types if supported_types is not None else DEFAULT_ENRICHMENT_TYPES)
        ]
        self._client = client
        self._owns_client = client is None

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def supports(self, file_type: Optional[str]) -> bool:
        return bool(file_type) and file_type.lower() in self.supported_types

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    async def notify(self, request: EnrichmentRequest) -> Optional[EnrichmentResult]:
        """
        POST ``request`` to the webhook and return the parsed result.

        Returns None when disabled; returns the unprocessed sentinel on
        any transport or decoding failure.
        """
        if not self.enabled:
            logger.debug(f"Enrichment disabled, skipping notify for {request.file_id}")
            return None

        start = time.monotonic()
        try:
            response = await self._get_client().post(
                self.webhook_url,
                json=request.to_payload(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = EnrichmentResult.from_response(request.file_id, response.json())
        except (httpx.HTTPError, ValueError) as e:
            duration_ms = (time.monotonic() - start) * 1000
            logger.warning(f"Enrichment notify failed for {request.file_id}: {e}")
            log(log_enrichment_event(
                "enrichment_notify", request.file_id, user_id=request.user_id,
                processed=False, duration_ms=duration_ms, error=str(e) or type(e).__name__,
            ))
            return EnrichmentResult.unprocessed(request.file_id, error=str(e) or type(e).__name__)

        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            f"Enrichment notify for {request.file_id} returned processed={result.processed} "
            f"in {duration_ms:.1f}ms"
        )
        log(log_enrichment_event(
            "enrichment_notify", request.file_id, user_id=request.user_id,
            processed=result.processed, duration_ms=duration_ms, error=result.error,
        ))
        return result

    async def aclose(self) -> None:
        """Close the owned httpx client. Injected clients are left to their owner."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            logger.info("Closed enrichment httpx client")
        self._client = None
