"""
Prometheus Export for tts-hub.

HubMetrics mirrors the resilience layer's activity as Prometheus series so
the diagnostics endpoint (/metrics) can be scraped. It is an export channel
only; the advisory numbers and recommendations come from
tts_hub.resilience.metrics.MetricsCollector.

Metrics Exposed:
    tts_hub_operations_total               - operations by provider and status
    tts_hub_operation_duration_seconds     - histogram of tracked operation latency
    tts_hub_retries_total                  - retry attempts by provider and error code
    tts_hub_cache_requests_total           - cache lookups by region and result
    tts_hub_cache_evictions_total          - entries removed by eviction sweeps
    tts_hub_pool_active_connections        - gauge of leased connections per provider
    tts_hub_inflight_operations            - gauge of occupied concurrency slots

Each HubMetrics owns a private CollectorRegistry, so several facades (for
example one per test) never collide on metric names.

Usage:
    metrics = HubMetrics()
    metrics.record_operation("azure", "success", 0.42)
    content, content_type = metrics.get_metrics_response()
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class HubMetrics:
    """Prometheus series for one ResilienceFacade."""

    def __init__(self) -> None:
        self._registry = CollectorRegistry()

        self._operations_total = Counter(
            "tts_hub_operations_total",
            "Total tracked provider operations",
            ["provider", "status"],
            registry=self._registry,
        )
        self._operation_duration = Histogram(
            "tts_hub_operation_duration_seconds",
            "Tracked operation duration in seconds",
            ["provider"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self._registry,
        )
        self._retries_total = Counter(
            "tts_hub_retries_total",
            "Retry attempts after a retryable failure",
            ["provider", "error_code"],
            registry=self._registry,
        )
        self._cache_requests = Counter(
            "tts_hub_cache_requests_total",
            "Cache lookups",
            ["region", "result"],
            registry=self._registry,
        )
        self._cache_evictions = Counter(
            "tts_hub_cache_evictions_total",
            "Entries removed by eviction sweeps",
            ["region"],
            registry=self._registry,
        )
        self._pool_active = Gauge(
            "tts_hub_pool_active_connections",
            "Connections currently leased from the pool",
            ["provider"],
            registry=self._registry,
        )
        self._inflight = Gauge(
            "tts_hub_inflight_operations",
            "Occupied concurrency slots",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_operation(self, provider: str, status: str, duration: float) -> None:
        """
        Record a completed tracked operation.

        Args:
            provider: Provider identifier.
            status: "success" or "error".
            duration: Duration in seconds.
        """
        self._operations_total.labels(provider=provider, status=status).inc()
        self._operation_duration.labels(provider=provider).observe(duration)

    def record_retry(self, provider: str, error_code: str) -> None:
        self._retries_total.labels(provider=provider, error_code=error_code).inc()

    def record_cache(self, region: str, result: str) -> None:
        """Record a cache lookup; result is "hit" or "miss"."""
        self._cache_requests.labels(region=region, result=result).inc()

    def record_evictions(self, region: str, count: int) -> None:
        if count > 0:
            self._cache_evictions.labels(region=region).inc(count)

    def set_pool_active(self, provider: str, active: int) -> None:
        self._pool_active.labels(provider=provider).set(active)

    def set_inflight(self, count: int) -> None:
        self._inflight.set(count)

    def get_metrics_response(self) -> tuple[bytes, str]:
        """
        Get metrics in Prometheus text format.

        Returns:
            Tuple of (content_bytes, content_type).
        """
        return generate_latest(self._registry), CONTENT_TYPE_LATEST
