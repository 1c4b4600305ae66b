"""Pydantic schemas for API responses. Cache and staleness payloads are camelCase on the wire."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from predfusion.models import ArbitrageOpportunity, PlatformHealthRecord, PricePoint, UnifiedMarket


class _Camel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Health ---
class HealthResponse(BaseModel):
    status: str = "ok"
    platforms: dict[str, str] = Field(default_factory=dict)


# --- Error (consistent shape for 4xx/5xx) ---
class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Human-readable message")
    code: str | None = Field(None, description="Machine-readable code, e.g. not_found, no_snapshot")


# --- Markets ---
class MarketsResponse(BaseModel):
    category: str
    markets: list[UnifiedMarket]
    total: int
    is_stale: bool = False
    stale_platforms: list[str] = Field(default_factory=list)
    offline_platforms: list[str] = Field(default_factory=list)
    produced_at: int | None = None


class LiveMarketResponse(BaseModel):
    market: UnifiedMarket
    fetched_at: int


class ArbitrageResponse(BaseModel):
    opportunities: list[ArbitrageOpportunity]
    stats: dict[str, Any]


# --- Cache ---
class TopCategory(_Camel):
    category: str
    accesses: int


class CacheStatsResponse(_Camel):
    metadata_size: int
    full_data_size: int
    hit_rate: float
    cache_hits: int
    cache_misses: int
    top_categories: list[TopCategory]


class CacheClearResponse(BaseModel):
    cleared: bool = True


# --- Platforms ---
class StalenessEntry(_Camel):
    is_stale: bool
    last_fetch: int | None = None
    time_since_last_fetch: int | None = None


class PlatformHealthResponse(BaseModel):
    platforms: dict[str, PlatformHealthRecord]


class PollingStatsResponse(BaseModel):
    platforms: dict[str, dict[str, Any]]
    cycles: int


# --- Search / history ---
class SearchResponse(BaseModel):
    query: str
    results: list[UnifiedMarket]
    total_searched: int
    result_count: int


class PriceSeriesOut(BaseModel):
    platform: str
    outcome: str
    points: list[PricePoint]


class PriceHistoryResponse(BaseModel):
    unified_id: str
    timeframe: str
    series: list[PriceSeriesOut]
