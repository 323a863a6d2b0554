"""
Performance Metrics and Advisory Report.

MetricsCollector wraps every tracked operation: it times it, turns its
outcome into an OperationResult (it never lets the operation's exception
escape), and folds the outcome into process-lifetime PerformanceMetrics.

Derived metrics:
    average_response_time_ms   cumulative mean of tracked durations
    error_rate                 errors / requests * 100
    cache_hit_rate             sum(hits) / sum(total_requests) * 100 over all cache regions
    pool_utilization           sum(active) / sum(total) * 100 over all provider pools

report() snapshots the metrics together with per-pool and per-region
statistics and a list of advisory recommendations. Recommendations are
plain strings for display; nothing acts on them automatically.
"""
from __future__ import annotations

import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar

from tts_hub.core.errors import HubError
from tts_hub.core.logging import fail, get_logger, operation_scope, success
from tts_hub.resilience.cache import CacheStore
from tts_hub.resilience.pool import PoolRegistry
from tts_hub.utils.timeit import timeit

_LOG = get_logger("tts-hub.metrics")

T = TypeVar("T")

# Recommendation thresholds
SLOW_RESPONSE_MS = 5000.0
LOW_HIT_RATE_PCT = 50.0
HIGH_ERROR_RATE_PCT = 5.0
HIGH_POOL_UTILIZATION_PCT = 80.0


@dataclass(frozen=True)
class OperationContext:
    """
    Describes one tracked provider call.

    Attributes:
        provider: Provider id; selects the pool and the error classifier.
        operation: Short label for logs ("synthesize", "list_voices", ...).
        cache_key: When set, the audio region is consulted before the call
            and written after a successful one.
        max_retries: Retry budget, None for the configured default.
        base_delay: First backoff delay in seconds, None for the default.
        timeout: Seconds allowed for each wait (slot and connection).
        cancel: Optional threading.Event aborting every wait.
    """
    provider: str
    operation: str = "call"
    cache_key: Optional[str] = None
    max_retries: Optional[int] = None
    base_delay: Optional[float] = None
    timeout: Optional[float] = None
    cancel: Optional[threading.Event] = field(default=None, compare=False)


@dataclass(frozen=True)
class OperationResult:
    """
    Uniform outcome of a tracked operation.

    Exactly one of ``result`` / ``error`` is meaningful, depending on
    ``success``.
    """
    success: bool
    operation_id: str
    execution_time_ms: float
    provider: str = ""
    result: Any = None
    error: Optional[BaseException] = None
    cache_hit: bool = False

    @property
    def error_code(self) -> Optional[str]:
        if self.error is None:
            return None
        return getattr(self.error, "code", type(self.error).__name__)

    @property
    def user_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return getattr(self.error, "user_message", None) or str(self.error)

    def to_dict(self) -> Dict[str, Any]:
        """Serialisable summary (the payload itself is omitted)."""
        data: Dict[str, Any] = {
            "success": self.success,
            "operation_id": self.operation_id,
            "execution_time_ms": round(self.execution_time_ms, 3),
            "provider": self.provider,
            "cache_hit": self.cache_hit,
        }
        if self.error is not None:
            data["error"] = (
                self.error.to_dict() if isinstance(self.error, HubError)
                else {"error": self.error_code, "message": str(self.error)}
            )
        return data


@dataclass
class PerformanceMetrics:
    """Process-lifetime aggregates."""
    request_count: int = 0
    total_execution_time_ms: float = 0.0
    average_response_time_ms: float = 0.0
    error_count: int = 0
    error_rate: float = 0.0
    cache_hit_rate: float = 0.0
    pool_utilization: float = 0.0


@dataclass
class ProviderMetrics:
    """Per-provider request/error counters."""
    request_count: int = 0
    error_count: int = 0
    total_execution_time_ms: float = 0.0

    @property
    def average_response_time_ms(self) -> float:
        return self.total_execution_time_ms / self.request_count if self.request_count else 0.0


@dataclass
class PerformanceReport:
    """Snapshot produced by MetricsCollector.report()."""
    generated_at: str
    metrics: PerformanceMetrics
    connection_pools: Dict[str, Dict[str, int]]
    cache_statistics: Dict[str, Dict[str, Any]]
    providers: Dict[str, Dict[str, float]]
    recommendations: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": self.generated_at,
            "metrics": asdict(self.metrics),
            "connection_pools": self.connection_pools,
            "cache_statistics": self.cache_statistics,
            "providers": self.providers,
            "recommendations": list(self.recommendations),
        }


def _new_operation_id() -> str:
    return uuid.uuid4().hex[:12]


class MetricsCollector:
    """
    Tracks operations and aggregates PerformanceMetrics.

    All counters are updated under one lock so concurrent track() calls
    never lose updates.
    """

    def __init__(
        self,
        caches: Optional[Mapping[str, CacheStore]] = None,
        pools: Optional[PoolRegistry] = None,
    ):
        self._caches: Mapping[str, CacheStore] = caches or {}
        self._pools = pools
        self._lock = threading.Lock()
        self._metrics = PerformanceMetrics()
        self._per_provider: Dict[str, ProviderMetrics] = {}

    # ------------------------------------------------------------------
    # Derived gauges
    # ------------------------------------------------------------------

    def cache_hit_rate(self) -> float:
        hits = 0
        total = 0
        for store in self._caches.values():
            stats = store.stats()
            hits += stats["hits"]
            total += stats["total_requests"]
        return hits / total * 100.0 if total else 0.0

    def pool_utilization(self) -> float:
        return self._pools.utilization() if self._pools is not None else 0.0

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def _record(self, provider: str, ok: bool, duration_ms: float) -> None:
        with self._lock:
            m = self._metrics
            m.request_count += 1
            m.total_execution_time_ms += duration_ms
            m.average_response_time_ms = m.total_execution_time_ms / m.request_count
            if not ok:
                m.error_count += 1
            m.error_rate = m.error_count / m.request_count * 100.0
            # sampled under the lock
            m.cache_hit_rate = self.cache_hit_rate()
            m.pool_utilization = self.pool_utilization()

            per = self._per_provider.setdefault(provider, ProviderMetrics())
            per.request_count += 1
            per.total_execution_time_ms += duration_ms
            if not ok:
                per.error_count += 1

    def _finish(self, context: OperationContext, op_id: str, t: timeit, value: Any, exc: Optional[Exception]) -> OperationResult:
        duration_ms = t.timing.ms if t.timing else 0.0
        ok = exc is None
        self._record(context.provider, ok, duration_ms)

        if ok:
            success(_LOG, "op_success", provider=context.provider, operation=context.operation,
                    seconds=round(duration_ms / 1000.0, 4))
        else:
            fail(_LOG, "op_failed", provider=context.provider, operation=context.operation,
                 error_code=getattr(exc, "code", type(exc).__name__), error=str(exc),
                 seconds=round(duration_ms / 1000.0, 4))

        return OperationResult(
            success=ok,
            operation_id=op_id,
            execution_time_ms=duration_ms,
            provider=context.provider,
            result=value if ok else None,
            error=exc,
        )

    def track(self, op: Callable[[], T], context: OperationContext) -> OperationResult:
        """
        Run ``op`` and record its outcome.

        Never raises for failures of ``op``: any Exception becomes an
        OperationResult with success=False.
        """
        op_id = _new_operation_id()
        value: Any = None
        exc: Optional[Exception] = None

        with operation_scope(op_id):
            with timeit("tracked_op") as t:
                try:
                    value = op()
                except Exception as e:
                    exc = e
            return self._finish(context, op_id, t, value, exc)

    async def track_async(self, op: Callable[[], Awaitable[T]], context: OperationContext) -> OperationResult:
        """
        Async counterpart of track().

        Task cancellation (asyncio.CancelledError) is not an operation
        failure and propagates to the caller.
        """
        op_id = _new_operation_id()
        value: Any = None
        exc: Optional[Exception] = None

        with operation_scope(op_id):
            with timeit("tracked_op") as t:
                try:
                    value = await op()
                except Exception as e:
                    exc = e
            return self._finish(context, op_id, t, value, exc)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def snapshot(self) -> PerformanceMetrics:
        """Copy of the current metrics with fresh cache/pool gauges."""
        hit_rate = self.cache_hit_rate()
        utilization = self.pool_utilization()
        with self._lock:
            m = PerformanceMetrics(**asdict(self._metrics))
        m.cache_hit_rate = hit_rate
        m.pool_utilization = utilization
        return m

    def recommendations(self, metrics: Optional[PerformanceMetrics] = None) -> List[str]:
        """Threshold-derived advice for the current metrics."""
        m = metrics or self.snapshot()
        advice: List[str] = []

        if m.request_count and m.average_response_time_ms > SLOW_RESPONSE_MS:
            advice.append(
                f"Average response time is {m.average_response_time_ms:.0f} ms. "
                "Consider a closer provider region or shorter text segments."
            )

        cache_requests = sum(s.stats()["total_requests"] for s in self._caches.values())
        if cache_requests and m.cache_hit_rate < LOW_HIT_RATE_PCT:
            advice.append(
                f"Cache hit rate is {m.cache_hit_rate:.1f}%. "
                "Consider a longer audio cache TTL or a larger audio cache."
            )

        if m.request_count and m.error_rate > HIGH_ERROR_RATE_PCT:
            advice.append(
                f"Error rate is {m.error_rate:.1f}%. "
                "Check provider credentials, quotas and network connectivity."
            )

        if m.pool_utilization > HIGH_POOL_UTILIZATION_PCT:
            advice.append(
                f"Connection pool utilization is {m.pool_utilization:.1f}%. "
                "Consider raising max_pool_size for busy providers."
            )

        return advice

    def report(self) -> PerformanceReport:
        m = self.snapshot()
        pools = self._pools.stats() if self._pools is not None else {}
        with self._lock:
            providers = {
                name: {
                    "request_count": per.request_count,
                    "error_count": per.error_count,
                    "average_response_time_ms": per.average_response_time_ms,
                }
                for name, per in self._per_provider.items()
            }

        return PerformanceReport(
            generated_at=datetime.now(timezone.utc).isoformat(),
            metrics=m,
            connection_pools={name: s.to_dict() for name, s in pools.items()},
            cache_statistics={
                name: {"entry_count": len(store), "stats": store.stats()}
                for name, store in self._caches.items()
            },
            providers=providers,
            recommendations=self.recommendations(m),
        )

    def clear(self) -> None:
        """Reset all accumulated metrics."""
        with self._lock:
            self._metrics = PerformanceMetrics()
            self._per_provider.clear()
