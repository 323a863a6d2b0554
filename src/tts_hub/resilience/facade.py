"""
ResilienceFacade - Single Entry Point of the Resilience Layer.

The facade owns every piece of shared state: one connection pool per
provider, the three cache regions, the global concurrency limiter, the
retry invoker with its classifier table and the metrics collector. Nothing
is module-global; build one facade per application (or per test) and
close() it on shutdown.

Tracked execution:
    execute_tracked(op, context)
        -> MetricsCollector.track              (timing, never raises)
            -> audio cache lookup               (when context.cache_key is set)
            -> ConcurrencyLimiter slot          (global bound on in-flight calls)
            -> ConnectionPool lease             (per provider)
            -> RetryInvoker.invoke(op(conn))    (classified, exponential backoff)
            -> audio cache write                (on success)

Example:
    >>> facade = ResilienceFacade.from_settings(load_settings("config/settings.yaml"))
    >>> ctx = OperationContext(provider="azure", operation="synthesize", cache_key=key)
    >>> result = facade.execute_tracked(lambda conn: conn.client.post(path, content=ssml).content, ctx)
    >>> if result.success:
    ...     play(result.result)
    >>> facade.save_report("reports/performance.json")
    >>> facade.close()
"""
from __future__ import annotations

import json
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx

from tts_hub.core.config import HubConfig, ProviderConfig, Settings
from tts_hub.core.logging import get_logger, info
from tts_hub.core.metrics import HubMetrics
from tts_hub.resilience.cache import CacheRegion, CacheStore
from tts_hub.resilience.classifier import ClassifierFunc, ErrorClassifier
from tts_hub.resilience.concurrency import ConcurrencyLimiter
from tts_hub.resilience.metrics import (
    MetricsCollector,
    OperationContext,
    OperationResult,
    PerformanceReport,
)
from tts_hub.resilience.pool import Connection, ConnectionPool, PoolRegistry
from tts_hub.resilience.retry import RetryInvoker

_LOG = get_logger("tts-hub.facade")

T = TypeVar("T")

ClientFactory = Callable[[ProviderConfig], httpx.Client]


def default_client_factory(provider: ProviderConfig) -> httpx.Client:
    """httpx client bound to the provider's base URL and timeout."""
    if provider.base_url:
        return httpx.Client(base_url=provider.base_url, timeout=provider.timeout_s)
    return httpx.Client(timeout=provider.timeout_s)


class ResilienceFacade:
    """
    Composes pools, caches, limiter, retry and metrics.

    Usage:
        config = HubConfig(providers={"azure": ProviderConfig("azure", 2, 4)})
        with ResilienceFacade(config) as facade:
            result = facade.execute_tracked(call_azure, OperationContext("azure"))
    """

    def __init__(
        self,
        config: Optional[HubConfig] = None,
        client_factory: Optional[ClientFactory] = None,
        classifier: Optional[ErrorClassifier] = None,
        metrics: Optional[HubMetrics] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Build the facade and one pool per configured provider.

        Args:
            config: Validated configuration (defaults when omitted).
            client_factory: Builds the httpx client of each pooled connection.
            classifier: Classifier table (azure/elevenlabs built in).
            metrics: Prometheus export; a private one is created when omitted.
            sleep: Backoff sleep override, used by tests.
        """
        # private copy: register_provider() adds to the provider table
        self._config = replace(config, providers=dict(config.providers)) if config is not None else HubConfig()
        self._client_factory = client_factory or default_client_factory
        self._prometheus = metrics or HubMetrics()
        self._lock = threading.Lock()
        self._closed = False

        self._pools: PoolRegistry[Connection] = PoolRegistry(metrics=self._prometheus)

        cache_cfg = self._config.cache
        self._caches: Dict[str, CacheStore] = {
            CacheRegion.AUDIO.value: CacheStore.from_config(CacheRegion.AUDIO.value, cache_cfg.audio),
            CacheRegion.METADATA.value: CacheStore.from_config(CacheRegion.METADATA.value, cache_cfg.metadata),
            CacheRegion.CONFIGURATION.value: CacheStore.from_config(
                CacheRegion.CONFIGURATION.value, cache_cfg.configuration
            ),
        }

        conc = self._config.concurrency
        self._limiter = ConcurrencyLimiter(
            max_concurrent=conc.max_concurrent,
            max_queue=conc.max_queue,
            default_timeout=conc.timeout_s,
            metrics=self._prometheus,
        )

        retry_kwargs: Dict[str, Any] = {}
        if sleep is not None:
            retry_kwargs["sleep"] = sleep
        self._classifier = classifier or ErrorClassifier()
        self._retry = RetryInvoker(self._classifier, metrics=self._prometheus, **retry_kwargs)

        self._collector = MetricsCollector(caches=self._caches, pools=self._pools)

        for provider in self._config.providers.values():
            self.register_provider(provider)

        info(
            _LOG,
            "facade_ready",
            providers=",".join(self._pools.providers()) or "-",
            max_concurrent=conc.max_concurrent,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "ResilienceFacade":
        """Build a facade from raw settings (validated on the way)."""
        return cls(HubConfig.from_settings(settings), **kwargs)

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def config(self) -> HubConfig:
        return self._config

    @property
    def pools(self) -> PoolRegistry[Connection]:
        return self._pools

    @property
    def caches(self) -> Dict[str, CacheStore]:
        return self._caches

    @property
    def limiter(self) -> ConcurrencyLimiter:
        return self._limiter

    @property
    def classifier(self) -> ErrorClassifier:
        return self._classifier

    @property
    def collector(self) -> MetricsCollector:
        return self._collector

    @property
    def prometheus(self) -> HubMetrics:
        return self._prometheus

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_provider(self, provider: ProviderConfig) -> ConnectionPool[Connection]:
        """
        Create the connection pool for a provider.

        Raises:
            ValueError: The provider is already registered or its sizes are invalid.
        """
        max_age = self._config.pool.max_age_seconds
        make_client = self._client_factory

        def factory() -> Connection:
            return Connection(
                provider.name,
                max_age_seconds=max_age,
                client_factory=lambda: make_client(provider),
            )

        pool = self._pools.register(
            provider.name,
            factory,
            min_size=provider.min_pool_size,
            max_size=provider.max_pool_size,
            acquire_timeout=self._config.pool.acquire_timeout_s,
        )
        self._config.providers.setdefault(provider.name, provider)
        return pool

    def register_classifier(self, provider: str, func: ClassifierFunc) -> None:
        """Install (or replace) the failure classifier of one provider."""
        self._classifier.register(provider, func)

    # ------------------------------------------------------------------
    # Pools
    # ------------------------------------------------------------------

    def acquire_connection(
        self,
        provider: str,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Connection:
        """
        Lease a connection for ``provider``; pair with release_connection().

        Raises:
            UnknownProviderError: No pool is registered for ``provider``.
            PoolAcquireTimeout: The pool stayed exhausted until the deadline.
            OperationCancelled: ``cancel`` was set while waiting.
        """
        return self._pools.get(provider).acquire(timeout=timeout, cancel=cancel)

    def release_connection(self, provider: str, conn: Connection) -> None:
        self._pools.get(provider).release(conn)

    # ------------------------------------------------------------------
    # Caches
    # ------------------------------------------------------------------

    def cache(self, region: CacheRegion | str) -> CacheStore:
        """The CacheStore of a region (raises ValueError for unknown regions)."""
        return self._caches[CacheRegion(region).value]

    def cache_lookup(self, region: CacheRegion | str, key: Any) -> tuple[bool, Any]:
        """(found, value) for ``key``; a cached None is still found."""
        store = self.cache(region)
        found, value = store.lookup(key)
        self._prometheus.record_cache(store.name, "hit" if found else "miss")
        return found, value

    def cache_get(self, region: CacheRegion | str, key: Any, default: Any = None) -> Any:
        found, value = self.cache_lookup(region, key)
        return value if found else default

    def cache_set(self, region: CacheRegion | str, key: Any, value: Any) -> int:
        """Store a value; returns how many entries the write evicted."""
        store = self.cache(region)
        evicted = store.set(key, value)
        if evicted:
            self._prometheus.record_evictions(store.name, evicted)
        return evicted

    # ------------------------------------------------------------------
    # Tracked execution
    # ------------------------------------------------------------------

    def _retry_settings(self, context: OperationContext) -> tuple[int, float]:
        retry = self._config.retry
        max_retries = retry.max_retries if context.max_retries is None else context.max_retries
        base_delay = retry.base_delay if context.base_delay is None else context.base_delay
        return max_retries, base_delay

    def _finish(self, result: OperationResult, cache_hit: bool) -> OperationResult:
        self._prometheus.record_operation(
            result.provider,
            "success" if result.success else "error",
            result.execution_time_ms / 1000.0,
        )
        if cache_hit:
            result = replace(result, cache_hit=True)
        return result

    def execute_tracked(
        self,
        op: Callable[[Connection], T],
        context: OperationContext,
    ) -> OperationResult:
        """
        Run a provider call with caching, limiting, pooling and retries.

        ``op`` receives the leased Connection. Failures of any stage
        (unknown provider, limiter timeout, pool timeout, classified
        provider errors) come back as an OperationResult with
        success=False; this method does not raise them.
        """
        max_retries, base_delay = self._retry_settings(context)
        cache_hit = False

        def run() -> T:
            nonlocal cache_hit
            pool = self._pools.get(context.provider)

            if context.cache_key is not None:
                found, value = self.cache_lookup(CacheRegion.AUDIO, context.cache_key)
                if found:
                    cache_hit = True
                    return value

            def call() -> T:
                with pool.connection(timeout=context.timeout, cancel=context.cancel) as conn:
                    return self._retry.invoke(
                        lambda: op(conn),
                        max_retries=max_retries,
                        base_delay=base_delay,
                        provider=context.provider,
                        cancel=context.cancel,
                    )

            value = self._limiter.run(call, timeout=context.timeout, cancel=context.cancel)
            if context.cache_key is not None:
                self.cache_set(CacheRegion.AUDIO, context.cache_key, value)
            return value

        return self._finish(self._collector.track(run, context), cache_hit)

    async def execute_tracked_async(
        self,
        op: Callable[[Connection], Awaitable[T]],
        context: OperationContext,
    ) -> OperationResult:
        """
        Asyncio counterpart of execute_tracked().

        Waiting never blocks the event loop. Cancelling the awaiting task
        releases the slot and the connection and propagates CancelledError;
        setting context.cancel ends the wait with a CANCELLED result.
        """
        max_retries, base_delay = self._retry_settings(context)
        cache_hit = False

        async def run() -> T:
            nonlocal cache_hit
            pool = self._pools.get(context.provider)

            if context.cache_key is not None:
                found, value = self.cache_lookup(CacheRegion.AUDIO, context.cache_key)
                if found:
                    cache_hit = True
                    return value

            async def call() -> T:
                conn = await pool.acquire_async(timeout=context.timeout, cancel=context.cancel)
                try:
                    return await self._retry.invoke_async(
                        lambda: op(conn),
                        max_retries=max_retries,
                        base_delay=base_delay,
                        provider=context.provider,
                        cancel=context.cancel,
                    )
                finally:
                    pool.release(conn)

            value = await self._limiter.run_async(call, timeout=context.timeout, cancel=context.cancel)
            if context.cache_key is not None:
                self.cache_set(CacheRegion.AUDIO, context.cache_key, value)
            return value

        return self._finish(await self._collector.track_async(run, context), cache_hit)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def report(self) -> PerformanceReport:
        return self._collector.report()

    def save_report(self, path: str | Path) -> Path:
        """Write report() as JSON, creating parent directories."""
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(self.report().to_dict(), indent=2), encoding="utf-8")
        info(_LOG, "report_saved", path=str(p))
        return p

    def clear_metrics(self) -> None:
        self._collector.clear()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Drain every pool and clear every cache region. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        disposed = self._pools.drain_all()
        cleared = sum(store.clear() for store in self._caches.values())
        info(_LOG, "facade_closed", disposed=disposed, cleared=cleared)

    def __enter__(self) -> "ResilienceFacade":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
