"""
Diagnostics API Routes.

Read-only endpoints exposing the state of the resilience layer to the
surrounding application and to monitoring.

Endpoints:
    GET /health      - Liveness plus registered providers and free slots
    GET /metrics     - Prometheus text format
    GET /v1/report   - PerformanceReport (metrics, pools, caches, recommendations)
    GET /v1/pools    - Connection pool statistics per provider
    GET /v1/caches   - Statistics per cache region

Example Usage:
    >>> import httpx
    >>> report = httpx.get("http://localhost:8000/v1/report").json()
    >>> for line in report["recommendations"]:
    ...     print(line)
"""
from __future__ import annotations

from typing import Dict

from fastapi import APIRouter, Depends, Response

from tts_hub import __version__
from tts_hub.api.dependencies import get_facade
from tts_hub.api.schemas import (
    CacheRegionModel,
    HealthResponse,
    PoolStatsModel,
    ReportResponse,
)
from tts_hub.core.logging import get_logger, verbose
from tts_hub.resilience.facade import ResilienceFacade

router = APIRouter()

_LOG = get_logger("tts-hub.api")


@router.get("/health", response_model=HealthResponse)
def health(facade: ResilienceFacade = Depends(get_facade)):
    """
    Health check for probes.

    "degraded" means the facade was closed: pools are drained and every
    tracked call will fail.
    """
    return HealthResponse(
        status="degraded" if facade.closed else "healthy",
        version=__version__,
        providers=facade.pools.providers(),
        max_concurrent=facade.limiter.max_concurrent,
        available_slots=facade.limiter.available_slots,
    )


@router.get("/metrics")
def prometheus_metrics(facade: ResilienceFacade = Depends(get_facade)):
    """Prometheus scrape endpoint for this facade's registry."""
    content, content_type = facade.prometheus.get_metrics_response()
    return Response(content=content, media_type=content_type)


@router.get("/v1/report", response_model=ReportResponse)
def performance_report(facade: ResilienceFacade = Depends(get_facade)):
    report = facade.report()
    verbose(_LOG, "report_served", recommendations=len(report.recommendations))
    return report.to_dict()


@router.get("/v1/pools", response_model=Dict[str, PoolStatsModel])
def pool_stats(facade: ResilienceFacade = Depends(get_facade)):
    return {name: stats.to_dict() for name, stats in facade.pools.stats().items()}


@router.get("/v1/caches", response_model=Dict[str, CacheRegionModel])
def cache_stats(facade: ResilienceFacade = Depends(get_facade)):
    return {
        name: {"entry_count": len(store), "stats": store.stats()}
        for name, store in facade.caches.items()
    }
