"""
Resilience Components.

This package provides everything the facade composes:
    - pool.py: Per-provider connection pools and the pool registry
    - cache.py: TTL cache regions with batch eviction
    - concurrency.py: Global limiter on in-flight provider calls
    - classifier.py: Registerable per-provider failure classification
    - retry.py: Exponential backoff retry
    - metrics.py: Operation tracking and the performance report
    - facade.py: ResilienceFacade, the single entry point
"""
from .cache import CacheRegion, CacheStore, EvictionPolicy, make_cache_key
from .classifier import ErrorClassification, ErrorClassifier
from .concurrency import ConcurrencyLimiter
from .facade import ResilienceFacade
from .metrics import (
    MetricsCollector,
    OperationContext,
    OperationResult,
    PerformanceMetrics,
    PerformanceReport,
)
from .pool import Connection, ConnectionPool, PoolRegistry
from .retry import RetryInvoker

__all__ = [
    "ResilienceFacade",
    "OperationContext",
    "OperationResult",
    "PerformanceMetrics",
    "PerformanceReport",
    "MetricsCollector",
    "Connection",
    "ConnectionPool",
    "PoolRegistry",
    "CacheRegion",
    "CacheStore",
    "EvictionPolicy",
    "make_cache_key",
    "ConcurrencyLimiter",
    "ErrorClassification",
    "ErrorClassifier",
    "RetryInvoker",
]
