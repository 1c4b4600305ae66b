"""FastAPI read API over the aggregation cache."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from pathlib import Path

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from predfusion.aggregation import Orchestrator, arbitrage_stats
from predfusion.aggregation.orchestrator import MarketsView
from predfusion.api.schemas import (
    ArbitrageResponse,
    CacheClearResponse,
    CacheStatsResponse,
    ErrorResponse,
    HealthResponse,
    LiveMarketResponse,
    MarketsResponse,
    PlatformHealthResponse,
    PollingStatsResponse,
    PriceHistoryResponse,
    PriceSeriesOut,
    SearchResponse,
    StalenessEntry,
    TopCategory,
)
from predfusion.cache import ALL_CATEGORY
from predfusion.config import get_settings
from predfusion.errors import NoSnapshotError

log = structlog.get_logger(__name__)

# Set by run_api() so the lifespan builds the orchestrator from the chosen config.
_config_profile: str | None = None
_config_dir: Path | None = None


def _error_json(code: str, message: str, status_code: int = 404) -> JSONResponse:
    """Return consistent error JSON: { detail, code }."""
    return JSONResponse(
        status_code=status_code,
        content={"detail": message, "code": code},
    )


def _markets_response(category: str, view: MarketsView) -> MarketsResponse:
    return MarketsResponse(
        category=category,
        markets=view.markets,
        total=len(view.markets),
        is_stale=view.is_stale,
        stale_platforms=view.stale_platforms,
        offline_platforms=view.offline_platforms,
        produced_at=view.produced_at,
    )


def create_app(orchestrator: Orchestrator | None = None, *, start_polling: bool = True) -> FastAPI:
    """Build the app. Without an orchestrator one is built from config at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        orch = orchestrator
        if orch is None:
            # Missing platform config fails here, at startup, not on the first request
            orch = Orchestrator.from_settings(get_settings(_config_profile, _config_dir))
        app.state.orchestrator = orch
        if start_polling:
            orch.start()
        yield
        if start_polling:
            await orch.stop()

    app = FastAPI(title="PredFusion API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    def orch() -> Orchestrator:
        return app.state.orchestrator

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        records = orch().platform_health()
        return HealthResponse(status="ok", platforms={pid: r.status.value for pid, r in records.items()})

    @app.get("/markets", response_model=MarketsResponse, responses={503: {"model": ErrorResponse}})
    async def markets_all():
        """Every unified market. No upper bound on list length."""
        return await markets_by_category(ALL_CATEGORY)

    @app.get("/markets/{category}", response_model=MarketsResponse, responses={503: {"model": ErrorResponse}})
    async def markets_by_category(category: str):
        """Unified markets for a category, 'trending' re-ranked by volume and recency, or 'multi-outcome'."""
        try:
            view = await orch().markets(category)
        except NoSnapshotError as e:
            return _error_json("no_snapshot", str(e), 503)
        return _markets_response(category, view)

    @app.get(
        "/market/{unified_id}/live",
        response_model=LiveMarketResponse,
        responses={404: {"model": ErrorResponse}},
    )
    async def market_live(unified_id: str):
        """Single unified market refetched from every constituent platform now."""
        o = orch()
        try:
            market = await o.live_market(unified_id)
        except KeyError:
            return _error_json("not_found", f"Unknown unified market: {unified_id}", 404)
        return LiveMarketResponse(market=market, fetched_at=o.clock())

    @app.get("/search", response_model=SearchResponse, responses={400: {"model": ErrorResponse}})
    async def search(q: str = ""):
        """Unified markets whose question or category contains q (at least 2 characters)."""
        try:
            results, searched = await orch().search(q)
        except ValueError as e:
            return _error_json("invalid_query", str(e), 400)
        except NoSnapshotError as e:
            return _error_json("no_snapshot", str(e), 503)
        return SearchResponse(query=q, results=results, total_searched=searched, result_count=len(results))

    @app.get(
        "/market/{unified_id}/history/{timeframe}",
        response_model=PriceHistoryResponse,
        responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    )
    async def market_history(unified_id: str, timeframe: str):
        """Price history per platform and outcome over 1H, 6H, 1D, 1W, 1Y or ALL."""
        try:
            series = orch().price_history(unified_id, timeframe)
        except ValueError as e:
            return _error_json("invalid_timeframe", str(e), 400)
        except KeyError:
            return _error_json("not_found", f"Unknown unified market: {unified_id}", 404)
        return PriceHistoryResponse(
            unified_id=unified_id,
            timeframe=timeframe.upper(),
            series=[PriceSeriesOut(platform=s.platform, outcome=s.outcome, points=s.points) for s in series],
        )

    @app.get("/arbitrage-opportunities", response_model=ArbitrageResponse, responses={503: {"model": ErrorResponse}})
    async def arbitrage_opportunities():
        try:
            opps = await orch().arbitrage_opportunities()
        except NoSnapshotError as e:
            return _error_json("no_snapshot", str(e), 503)
        return ArbitrageResponse(opportunities=opps, stats=asdict(arbitrage_stats(opps)))

    @app.get("/cache/stats", response_model=CacheStatsResponse)
    async def cache_stats() -> CacheStatsResponse:
        stats = orch().cache.stats(top_n=50)
        sizes = stats.size_by_scope
        top = [
            TopCategory(category=key.split(":", 1)[1], accesses=n)
            for key, n in stats.top_keys
            if key.startswith("category:")
        ][:5]
        return CacheStatsResponse(
            metadata_size=sizes["category"] + sizes["trending"] + sizes["arbitrage"],
            full_data_size=sizes["market"],
            hit_rate=stats.hit_rate,
            cache_hits=stats.hits,
            cache_misses=stats.misses,
            top_categories=top,
        )

    @app.post("/cache/clear", response_model=CacheClearResponse)
    async def cache_clear() -> CacheClearResponse:
        orch().cache.clear()
        return CacheClearResponse()

    @app.get("/staleness-status", response_model=dict[str, StalenessEntry])
    async def staleness_status() -> dict[str, StalenessEntry]:
        return {pid: StalenessEntry(**entry) for pid, entry in orch().staleness_status().items()}

    @app.get("/platform-health", response_model=PlatformHealthResponse)
    async def platform_health() -> PlatformHealthResponse:
        return PlatformHealthResponse(platforms=orch().platform_health())

    @app.get("/polling-stats", response_model=PollingStatsResponse)
    async def polling_stats() -> PollingStatsResponse:
        o = orch()
        return PollingStatsResponse(platforms=o.poll_stats.snapshot(), cycles=o.cycles)

    return app


app = create_app()


def run_api(
    host: str = "127.0.0.1",
    port: int = 8000,
    profile: str | None = None,
    config_dir: Path | None = None,
) -> None:
    global _config_profile, _config_dir
    _config_profile = profile
    _config_dir = config_dir
    import uvicorn

    uvicorn.run("predfusion.api.main:app", host=host, port=port, reload=False)
