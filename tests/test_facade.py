"""
Tests for ResilienceFacade.

Tests cover:
- execute_tracked() composition: cache, limiter, pool, retry, metrics
- execute_tracked() never raises
- Cache regions through the facade
- Explicit construction and teardown
- Async tracked execution
- Report persistence
"""
from __future__ import annotations

import asyncio
import json
import threading
import time

import httpx
import pytest

from tts_hub.core.config import (
    CacheConfig,
    CacheRegionConfig,
    ConcurrencyConfig,
    HubConfig,
    ProviderConfig,
    RetryConfig,
    Settings,
)
from tts_hub.core.errors import (
    AuthenticationError,
    ErrorCode,
    PoolAcquireTimeout,
    ProviderError,
    UnknownProviderError,
)
from tts_hub.resilience import (
    CacheRegion,
    Connection,
    ErrorClassification,
    OperationContext,
    ResilienceFacade,
    make_cache_key,
)


def make_config(**overrides) -> HubConfig:
    config = HubConfig(
        providers={
            "azure": ProviderConfig("azure", min_pool_size=2, max_pool_size=4, base_url="https://azure.test"),
            "elevenlabs": ProviderConfig("elevenlabs", min_pool_size=1, max_pool_size=2),
        },
        retry=RetryConfig(max_retries=3, base_delay_ms=10),
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


@pytest.fixture
def facade():
    hub = ResilienceFacade(make_config(), sleep=lambda _: None)
    yield hub
    hub.close()


def http_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://azure.test/cognitiveservices/v1")
    return httpx.HTTPStatusError("err", request=request, response=httpx.Response(status, request=request))


class TestConstruction:
    """Tests for explicit construction."""

    def test_pools_per_provider(self, facade):
        stats = facade.pools.stats()
        assert set(stats) == {"azure", "elevenlabs"}
        assert stats["azure"].to_dict() == {"total": 2, "active": 0, "available": 2, "max": 4, "min": 2}

    def test_three_cache_regions(self, facade):
        assert set(facade.caches) == {"audio", "metadata", "configuration"}
        assert facade.cache(CacheRegion.AUDIO).max_entries == 100

    def test_limiter_from_config(self):
        config = make_config(concurrency=ConcurrencyConfig(max_concurrent=3))
        with ResilienceFacade(config) as hub:
            assert hub.limiter.max_concurrent == 3

    def test_from_settings(self):
        settings = Settings(raw={"providers": {"polly": {"min_pool_size": 1, "max_pool_size": 2}}})
        with ResilienceFacade.from_settings(settings) as hub:
            assert hub.pools.providers() == ["polly"]

    def test_register_provider_later(self, facade):
        facade.register_provider(ProviderConfig("polly", min_pool_size=0, max_pool_size=1))
        assert "polly" in facade.pools
        with pytest.raises(ValueError):
            facade.register_provider(ProviderConfig("polly"))

    def test_facades_are_independent(self):
        """No state is shared between two facades."""
        with ResilienceFacade(make_config()) as a, ResilienceFacade(make_config()) as b:
            a.cache_set("audio", "k", b"x")
            assert b.cache_get("audio", "k") is None

    def test_shared_config_not_modified(self):
        """Providers registered on one facade stay out of the caller's config."""
        config = make_config()
        with ResilienceFacade(config) as first:
            first.register_provider(ProviderConfig("polly", min_pool_size=0, max_pool_size=1))
            assert "polly" in first.config.providers

        assert set(config.providers) == {"azure", "elevenlabs"}
        with ResilienceFacade(config) as second:
            assert sorted(second.pools.providers()) == ["azure", "elevenlabs"]


class TestConnections:
    """acquire_connection / release_connection."""

    def test_acquire_and_release(self, facade):
        conn = facade.acquire_connection("azure")
        assert isinstance(conn, Connection)
        assert facade.pools.get("azure").active_count == 1

        facade.release_connection("azure", conn)
        assert facade.pools.get("azure").active_count == 0

    def test_unknown_provider(self, facade):
        with pytest.raises(UnknownProviderError):
            facade.acquire_connection("polly")

    def test_client_bound_to_base_url(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={"voices": []})

        def client_factory(provider):
            return httpx.Client(base_url=provider.base_url, transport=httpx.MockTransport(handler))

        with ResilienceFacade(make_config(), client_factory=client_factory) as hub:
            conn = hub.acquire_connection("azure")
            assert conn.client.get("/voices/list").json() == {"voices": []}
            hub.release_connection("azure", conn)

        assert seen == ["https://azure.test/voices/list"]


class TestCaches:
    """cache_get / cache_set."""

    def test_set_and_get(self, facade):
        facade.cache_set(CacheRegion.METADATA, "voices:azure", ["jenny"])
        assert facade.cache_get("metadata", "voices:azure") == ["jenny"]
        assert facade.cache_get(CacheRegion.CONFIGURATION, "missing", default="d") == "d"

    def test_eviction_reported(self):
        cache = CacheConfig(audio=CacheRegionConfig(ttl_seconds=60, max_entries=2, eviction_batch=1))
        with ResilienceFacade(make_config(cache=cache)) as hub:
            hub.cache_set("audio", "a", 1)
            hub.cache_set("audio", "b", 2)
            assert hub.cache_set("audio", "c", 3) == 1

            content, _ = hub.prometheus.get_metrics_response()
            assert b'tts_hub_cache_evictions_total{region="audio"} 1.0' in content

    def test_unknown_region(self, facade):
        with pytest.raises(ValueError):
            facade.cache_get("thumbnails", "k")


class TestExecuteTracked:
    """execute_tracked()."""

    def test_success_receives_connection(self, facade):
        result = facade.execute_tracked(
            lambda conn: f"audio via {conn.provider}",
            OperationContext(provider="azure"),
        )
        assert result.success is True
        assert result.result == "audio via azure"
        assert result.cache_hit is False
        assert facade.pools.get("azure").active_count == 0
        assert facade.limiter.available_slots == facade.limiter.max_concurrent

    def test_retries_transient_failures(self, facade):
        calls = {"n": 0}

        def op(conn):
            calls["n"] += 1
            if calls["n"] < 3:
                raise http_error(503)
            return b"RIFF"

        result = facade.execute_tracked(op, OperationContext(provider="azure"))
        assert result.success is True
        assert calls["n"] == 3

    def test_failure_returns_result(self, facade):
        """A non-retryable failure comes back as data, not as an exception."""
        calls = {"n": 0}

        def op(conn):
            calls["n"] += 1
            raise http_error(401)

        result = facade.execute_tracked(op, OperationContext(provider="azure"))
        assert result.success is False
        assert isinstance(result.error, AuthenticationError)
        assert result.error_code == ErrorCode.AUTH_FAILED
        assert calls["n"] == 1
        assert facade.pools.get("azure").active_count == 0

    def test_exhausted_retries(self, facade):
        calls = {"n": 0}

        def op(conn):
            calls["n"] += 1
            raise ConnectionError("reset")

        result = facade.execute_tracked(op, OperationContext(provider="azure", max_retries=2))
        assert result.success is False
        assert isinstance(result.error, ProviderError)
        assert calls["n"] == 3

    def test_unknown_provider_returns_result(self, facade):
        result = facade.execute_tracked(lambda conn: None, OperationContext(provider="polly"))
        assert result.success is False
        assert isinstance(result.error, UnknownProviderError)

    def test_pool_timeout_returns_result(self, facade):
        held = [facade.acquire_connection("elevenlabs") for _ in range(2)]
        result = facade.execute_tracked(
            lambda conn: None,
            OperationContext(provider="elevenlabs", timeout=0.1),
        )
        assert result.success is False
        assert isinstance(result.error, PoolAcquireTimeout)
        for conn in held:
            facade.release_connection("elevenlabs", conn)

    def test_audio_cache_short_circuits(self, facade):
        key = make_cache_key("azure", "Hello", "en-US-JennyNeural")
        calls = {"n": 0}

        def op(conn):
            calls["n"] += 1
            return b"RIFF-hello"

        first = facade.execute_tracked(op, OperationContext(provider="azure", cache_key=key))
        second = facade.execute_tracked(op, OperationContext(provider="azure", cache_key=key))

        assert first.cache_hit is False
        assert second.cache_hit is True
        assert second.result == b"RIFF-hello"
        assert calls["n"] == 1
        assert facade.report().metrics.cache_hit_rate == pytest.approx(50.0)

    def test_failed_call_not_cached(self, facade):
        def op(conn):
            raise http_error(400)

        facade.execute_tracked(op, OperationContext(provider="azure", cache_key="k"))
        assert "k" not in facade.cache(CacheRegion.AUDIO)

    def test_limiter_bounds_parallel_calls(self):
        config = make_config(concurrency=ConcurrencyConfig(max_concurrent=2))
        peak = {"now": 0, "max": 0}
        lock = threading.Lock()

        def op(conn):
            with lock:
                peak["now"] += 1
                peak["max"] = max(peak["max"], peak["now"])
            time.sleep(0.03)
            with lock:
                peak["now"] -= 1
            return True

        with ResilienceFacade(config) as hub:
            results = []
            threads = [
                threading.Thread(target=lambda: results.append(hub.execute_tracked(op, OperationContext("azure"))))
                for _ in range(8)
            ]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        assert all(r.success for r in results)
        assert peak["max"] <= 2

    def test_custom_classifier(self, facade):
        facade.register_classifier(
            "elevenlabs",
            lambda exc: ErrorClassification(ErrorCode.QUOTA_EXCEEDED, "Out of characters.", False),
        )
        calls = {"n": 0}

        def op(conn):
            calls["n"] += 1
            raise RuntimeError("402")

        result = facade.execute_tracked(op, OperationContext(provider="elevenlabs"))
        assert result.error.code == ErrorCode.QUOTA_EXCEEDED
        assert result.user_message == "Out of characters."
        assert calls["n"] == 1

    def test_metrics_recorded(self, facade):
        facade.execute_tracked(lambda conn: 1, OperationContext(provider="azure"))
        facade.execute_tracked(lambda conn: 1 / 0, OperationContext(provider="azure", max_retries=0))

        m = facade.report().metrics
        assert m.request_count == 2
        assert m.error_rate == pytest.approx(50.0)

        content, _ = facade.prometheus.get_metrics_response()
        assert b'tts_hub_operations_total{provider="azure",status="success"} 1.0' in content
        assert b'tts_hub_operations_total{provider="azure",status="error"} 1.0' in content


class TestExecuteTrackedAsync:
    """execute_tracked_async()."""

    def test_async_success_and_cache(self, facade):
        calls = {"n": 0}

        async def op(conn):
            calls["n"] += 1
            await asyncio.sleep(0)
            return f"audio via {conn.provider}"

        async def main():
            ctx = OperationContext(provider="azure", cache_key="hello")
            return [await facade.execute_tracked_async(op, ctx) for _ in range(2)]

        first, second = asyncio.run(main())
        assert first.success and second.success
        assert second.cache_hit is True
        assert calls["n"] == 1
        assert facade.pools.get("azure").active_count == 0

    def test_async_failure_returns_result(self, facade):
        async def op(conn):
            raise http_error(403)

        result = asyncio.run(facade.execute_tracked_async(op, OperationContext(provider="azure")))
        assert result.success is False
        assert result.error_code == ErrorCode.QUOTA_EXCEEDED
        assert facade.limiter.active_count == 0

    def test_cancel_while_waiting_for_connection(self, facade):
        held = [facade.acquire_connection("elevenlabs") for _ in range(2)]
        cancel = threading.Event()
        cancel.set()

        async def op(conn):
            return b"never"

        ctx = OperationContext(provider="elevenlabs", timeout=1.0, cancel=cancel)
        start = time.monotonic()
        result = asyncio.run(facade.execute_tracked_async(op, ctx))

        assert result.success is False
        assert result.error_code == ErrorCode.CANCELLED
        assert time.monotonic() - start < 0.5
        assert facade.limiter.active_count == 0
        for conn in held:
            facade.release_connection("elevenlabs", conn)

    def test_cancel_while_waiting_for_slot(self):
        config = make_config(concurrency=ConcurrencyConfig(max_concurrent=1))
        cancel = threading.Event()

        async def op(conn):
            return b"never"

        async def main(hub):
            async with hub.limiter.slot_async():
                asyncio.get_running_loop().call_later(0.05, cancel.set)
                ctx = OperationContext(provider="azure", timeout=2.0, cancel=cancel)
                return await hub.execute_tracked_async(op, ctx)

        with ResilienceFacade(config) as hub:
            start = time.monotonic()
            result = asyncio.run(main(hub))
            assert result.error_code == ErrorCode.CANCELLED
            assert time.monotonic() - start < 1.0
            assert hub.limiter.waiting_count == 0
            assert hub.limiter.active_count == 0

    def test_cancel_during_backoff(self, facade):
        cancel = threading.Event()
        calls = {"n": 0}

        async def op(conn):
            calls["n"] += 1
            cancel.set()
            raise http_error(503)

        ctx = OperationContext(provider="azure", base_delay=5.0, cancel=cancel)
        start = time.monotonic()
        result = asyncio.run(facade.execute_tracked_async(op, ctx))

        assert result.error_code == ErrorCode.CANCELLED
        assert calls["n"] == 1
        assert time.monotonic() - start < 1.0
        assert facade.pools.get("azure").active_count == 0


class TestReportAndTeardown:
    """report(), save_report() and close()."""

    def test_save_report(self, facade, tmp_path):
        facade.execute_tracked(lambda conn: 1, OperationContext(provider="azure"))
        path = facade.save_report(tmp_path / "reports" / "perf.json")

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["metrics"]["request_count"] == 1
        assert data["connection_pools"]["azure"]["max"] == 4
        assert set(data["cache_statistics"]) == {"audio", "metadata", "configuration"}

    def test_clear_metrics(self, facade):
        facade.execute_tracked(lambda conn: 1, OperationContext(provider="azure"))
        facade.clear_metrics()
        assert facade.report().metrics.request_count == 0

    def test_close_drains_and_clears(self):
        hub = ResilienceFacade(make_config())
        hub.cache_set("audio", "k", b"x")
        idle = list(hub.pools.get("azure")._available)

        hub.close()
        hub.close()

        assert hub.closed is True
        assert all(conn.disposed for conn in idle)
        assert len(hub.cache("audio")) == 0
        result = hub.execute_tracked(lambda conn: 1, OperationContext(provider="azure"))
        assert result.success is False
        assert result.error_code == ErrorCode.POOL_CLOSED

    def test_context_manager_closes(self):
        with ResilienceFacade(make_config()) as hub:
            pass
        assert hub.closed is True
