"""Tests for the diagnostics API."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tts_hub.core.config import HubConfig, ProviderConfig
from tts_hub.main import create_app
from tts_hub.resilience import OperationContext, ResilienceFacade


@pytest.fixture
def facade():
    config = HubConfig(providers={
        "azure": ProviderConfig("azure", min_pool_size=2, max_pool_size=4),
        "elevenlabs": ProviderConfig("elevenlabs", min_pool_size=1, max_pool_size=2),
    })
    hub = ResilienceFacade(config, sleep=lambda _: None)
    yield hub
    hub.close()


@pytest.fixture
def client(facade):
    return TestClient(create_app(facade))


class TestHealth:
    """GET /health."""

    def test_healthy(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert set(data["providers"]) == {"azure", "elevenlabs"}
        assert data["max_concurrent"] == 5
        assert data["available_slots"] == 5

    def test_degraded_after_close(self, client, facade):
        facade.close()
        assert client.get("/health").json()["status"] == "degraded"


class TestMetricsEndpoint:
    """GET /metrics."""

    def test_prometheus_format(self, client, facade):
        facade.execute_tracked(lambda conn: b"RIFF", OperationContext(provider="azure"))
        response = client.get("/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "tts_hub_operations_total" in response.text
        assert "tts_hub_pool_active_connections" in response.text


class TestReportEndpoints:
    """GET /v1/report, /v1/pools, /v1/caches."""

    def test_report(self, client, facade):
        facade.execute_tracked(lambda conn: b"RIFF", OperationContext(provider="azure"))
        facade.execute_tracked(lambda conn: 1 / 0, OperationContext(provider="azure", max_retries=0))

        data = client.get("/v1/report").json()
        assert data["metrics"]["request_count"] == 2
        assert data["metrics"]["error_count"] == 1
        assert data["providers"]["azure"]["request_count"] == 2
        assert any("Error rate is" in line for line in data["recommendations"])

    def test_pools(self, client, facade):
        conn = facade.acquire_connection("elevenlabs")
        data = client.get("/v1/pools").json()
        facade.release_connection("elevenlabs", conn)

        assert data["azure"] == {"total": 2, "active": 0, "available": 2, "max": 4, "min": 2}
        assert data["elevenlabs"]["active"] == 1

    def test_caches(self, client, facade):
        facade.cache_set("metadata", "voices:azure", ["jenny"])
        facade.cache_get("metadata", "voices:azure")

        data = client.get("/v1/caches").json()
        assert set(data) == {"audio", "metadata", "configuration"}
        assert data["metadata"]["entry_count"] == 1
        assert data["metadata"]["stats"]["hits"] == 1
        assert data["audio"]["stats"]["max_entries"] == 100
