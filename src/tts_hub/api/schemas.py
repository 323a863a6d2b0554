"""
API Response Schemas.

Pydantic models for the diagnostics endpoints. They mirror the dictionaries
produced by the resilience layer (PoolStats.to_dict(), CacheStore.stats(),
PerformanceReport.to_dict()) so the OpenAPI document describes exactly what
the report consumer receives.

Models:
    HealthResponse: /health
    PoolStatsModel: one entry of /v1/pools and of the report's connection_pools
    CacheRegionModel: one entry of /v1/caches and of the report's cache_statistics
    ReportResponse: /v1/report

Example Report:
    {
        "generated_at": "2026-01-01T12:00:00+00:00",
        "metrics": {"request_count": 12, "error_rate": 8.3, ...},
        "connection_pools": {"azure": {"total": 2, "active": 0, "available": 2, "max": 4, "min": 2}},
        "cache_statistics": {"audio": {"entry_count": 7, "stats": {...}}},
        "recommendations": ["Error rate is 8.3%. ..."]
    }
"""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Liveness of the resilience layer."""
    status: str = Field(..., description='"healthy", or "degraded" once the facade is closed')
    version: str
    providers: List[str] = Field(default_factory=list, description="Providers with a connection pool")
    max_concurrent: int
    available_slots: int


class PoolStatsModel(BaseModel):
    total: int = Field(..., description="Live connections (leased + idle)")
    active: int = Field(..., description="Connections currently leased")
    available: int = Field(..., description="Idle connections ready for reuse")
    max: int
    min: int


class CacheStatsModel(BaseModel):
    hits: int
    misses: int
    evictions: int
    expirations: int
    total_requests: int
    hit_rate: float = Field(..., description="hits / total_requests * 100")
    size: int
    max_entries: Optional[int] = None
    ttl_seconds: float
    policy: str


class CacheRegionModel(BaseModel):
    entry_count: int
    stats: CacheStatsModel


class MetricsModel(BaseModel):
    request_count: int
    total_execution_time_ms: float
    average_response_time_ms: float
    error_count: int
    error_rate: float
    cache_hit_rate: float
    pool_utilization: float


class ProviderMetricsModel(BaseModel):
    request_count: int
    error_count: int
    average_response_time_ms: float


class ReportResponse(BaseModel):
    """Serialized PerformanceReport."""
    generated_at: str = Field(..., description="ISO-8601 UTC timestamp")
    metrics: MetricsModel
    connection_pools: Dict[str, PoolStatsModel]
    cache_statistics: Dict[str, CacheRegionModel]
    providers: Dict[str, ProviderMetricsModel] = Field(default_factory=dict)
    recommendations: List[str] = Field(default_factory=list)
