"""
Integration test fixtures — a full DocVaultRuntime built from a docvault.yaml.

Everything runs against a SQLite file, a LocalBlobBackend and an in-process
enrichment worker (httpx.MockTransport) under tmp_path.
Mark with @pytest.mark.integration to select or skip them.

Run: pytest tests/integration/ -v -m integration
"""

from __future__ import annotations

import json

import httpx
import pytest
import pytest_asyncio

from docvault.engine.config import load_config
from docvault.engine.runtime import DocVaultRuntime
from docvault.enrichment.notifier import EnrichmentNotifier


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: end-to-end runtime scenarios")


@pytest.fixture
def integration_project(tmp_path):
    """Project directory with a docvault.yaml pointing everything at tmp_path."""
    root = tmp_path / "project"
    root.mkdir()
    (root / "docvault.yaml").write_text(
        "name: IntegrationVault\n"
        "environment: dev\n"
        "database:\n"
        f"  url: sqlite:///{root / 'vault.db'}\n"
        "storage:\n"
        "  backend: local\n"
        f"  local_root: {root / 'blobs'}\n"
        "  public_base_url: http://blobs.test\n"
        "enrichment:\n"
        "  webhook_url: http://worker.test/process\n"
        "  timeout_seconds: 5\n"
        "logging:\n"
        f"  directory: {root / 'logs'}\n",
        encoding="utf-8",
    )
    return root


@pytest.fixture
def worker_requests():
    return []


@pytest.fixture
def worker_transport(worker_requests):
    """Enrichment worker stand-in that extracts the file name as text."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        worker_requests.append(body)
        return httpx.Response(200, json={
            "id": body["fileId"],
            "name": body.get("fileName", ""),
            "processed": True,
            "extractedText": f"contents of {body.get('fileName', '')}",
            "metadata": {"worker": "mock"},
        })

    return httpx.MockTransport(handler)


@pytest_asyncio.fixture
async def runtime(integration_project, worker_transport):
    config = load_config(str(integration_project / "docvault.yaml"))
    client = httpx.AsyncClient(transport=worker_transport)
    notifier = EnrichmentNotifier(
        config.enrichment.webhook_url,
        timeout=config.enrichment.timeout_seconds,
        client=client,
        supported_types=config.enrichment.supported_types,
    )
    rt = DocVaultRuntime(config, notifier=notifier)
    await rt.startup()
    yield rt
    await rt.shutdown()
    await client.aclose()


@pytest.fixture
def vault(runtime):
    return runtime.service
