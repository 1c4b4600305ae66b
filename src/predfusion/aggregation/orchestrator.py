"""Aggregation orchestrator - per-platform poll loops, fan-in aggregation cycle, cache publishing."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from threading import Lock
from typing import Any

import httpx
import structlog

from predfusion.aggregation.arbitrage import ArbitrageDetector
from predfusion.aggregation.trending import rank_trending
from predfusion.aggregation.unifier import Unifier
from predfusion.cache import (
    ALL_CATEGORY,
    ARBITRAGE_KEY,
    TRENDING_KEY,
    CacheManager,
    category_key,
    market_key,
)
from predfusion.clock import Clock, now_ms
from predfusion.config.settings import Settings
from predfusion.errors import ConfigurationError, NoSnapshotError, TransportError
from predfusion.health import HealthMonitor
from predfusion.ingestion import ADAPTERS, ProviderAdapter
from predfusion.ingestion.normalize import carry_history, normalize, normalize_batch
from predfusion.matching import Matcher
from predfusion.metrics import PollStats
from predfusion.models import ArbitrageOpportunity, MarketListing, PlatformStatus, PricePoint, UnifiedMarket

log = structlog.get_logger(__name__)

MULTI_OUTCOME = "multi-outcome"
MIN_SEARCH_LEN = 2
TIMEFRAMES_SEC: dict[str, int | None] = {
    "1H": 3600,
    "6H": 21600,
    "1D": 86400,
    "1W": 604800,
    "1Y": 31536000,
    "ALL": None,
}


def _search_text(market: UnifiedMarket) -> str:
    parts = [market.canonical_question, market.category or ""]
    parts.extend(lst.question for lst in market.platforms.values())
    return "\n".join(parts).lower()


@dataclass
class Snapshot:
    """Output of one aggregation cycle."""

    markets: list[UnifiedMarket]
    trending: list[UnifiedMarket]
    arbitrage: list[ArbitrageOpportunity]
    produced_at: int
    stale_platforms: list[str] = field(default_factory=list)
    offline_platforms: list[str] = field(default_factory=list)

    def find(self, unified_id: str) -> UnifiedMarket | None:
        return next((m for m in self.markets if m.unified_id == unified_id), None)


@dataclass
class MarketsView:
    """A market list as served to readers, with its staleness annotation."""

    markets: list[UnifiedMarket]
    is_stale: bool
    stale_platforms: list[str]
    offline_platforms: list[str]
    produced_at: int | None


@dataclass
class PriceSeries:
    platform: str
    outcome: str
    points: list[PricePoint]


class Orchestrator:
    """Composition root: owns adapters, listing state, and the pipeline components.

    Every dependency is injected so tests can pass fake adapters and a fake clock.
    """

    def __init__(
        self,
        adapters: Iterable[ProviderAdapter],
        *,
        matcher: Matcher | None = None,
        unifier: Unifier | None = None,
        detector: ArbitrageDetector | None = None,
        cache: CacheManager | None = None,
        health: HealthMonitor | None = None,
        poll_stats: PollStats | None = None,
        poll_intervals_sec: dict[str, float] | None = None,
        timeouts_sec: dict[str, float] | None = None,
        history_retention_sec: float = 86400,
        clock: Clock = now_ms,
    ) -> None:
        self.adapters: dict[str, ProviderAdapter] = {}
        for adapter in adapters:
            if not adapter.platform_id:
                raise ConfigurationError(f"adapter {type(adapter).__name__} has no platform_id")
            if adapter.platform_id in self.adapters:
                raise ConfigurationError(f"duplicate platform: {adapter.platform_id}")
            self.adapters[adapter.platform_id] = adapter
        if not self.adapters:
            raise ConfigurationError("no platforms registered")
        self.clock = clock
        self.matcher = matcher or Matcher()
        self.unifier = unifier or Unifier(self.matcher)
        self.detector = detector or ArbitrageDetector()
        self.cache = cache or CacheManager(clock=clock)
        self.health = health or HealthMonitor(clock=clock)
        self.poll_stats = poll_stats or PollStats()
        self.poll_intervals_sec = {pid: 10.0 for pid in self.adapters} | (poll_intervals_sec or {})
        self.timeouts_sec = {pid: 8.0 for pid in self.adapters} | (timeouts_sec or {})
        self.history_retention_ms = int(history_retention_sec * 1000)
        for pid in self.adapters:
            self.health.register(pid)

        self._listings: dict[str, dict[str, MarketListing]] = {}
        self._snapshot: Snapshot | None = None
        self._published_categories: set[str] = set()
        self._signals: asyncio.Queue[str] | None = None
        self._stop: asyncio.Event | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._cycle_lock = Lock()
        self.cycles = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        clock: Clock = now_ms,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> Orchestrator:
        """Build adapters for every enabled platform. No enabled platform is fatal."""
        adapters: list[ProviderAdapter] = []
        for ps in settings.enabled_platforms:
            adapter_cls = ADAPTERS.get(ps.platform_id)
            if adapter_cls is None:
                raise ConfigurationError(f"unknown platform in config: {ps.platform_id}")
            kwargs: dict[str, Any] = {
                "timeout_sec": ps.timeout_sec,
                "rate_per_min": ps.rate_per_min,
                "page_size": ps.page_size,
                "max_pages": ps.max_pages,
                "transport": transport,
                "clock": clock,
            }
            if ps.api_key:
                kwargs["api_key"] = ps.api_key
            adapters.append(adapter_cls(ps.base_url, **kwargs))
        if not adapters:
            raise ConfigurationError("no platforms enabled in [platforms]")
        matcher = Matcher.from_settings(settings)
        return cls(
            adapters,
            matcher=matcher,
            unifier=Unifier.from_settings(settings, matcher),
            detector=ArbitrageDetector(settings.min_profit_pct),
            cache=CacheManager.from_settings(settings, clock=clock),
            health=HealthMonitor.from_settings(settings, clock=clock),
            poll_intervals_sec={ps.platform_id: ps.poll_interval_sec for ps in settings.enabled_platforms},
            timeouts_sec={ps.platform_id: ps.timeout_sec for ps in settings.enabled_platforms},
            history_retention_sec=settings.history_retention_sec,
            clock=clock,
        )

    @property
    def platforms(self) -> list[str]:
        return sorted(self.adapters)

    @property
    def snapshot(self) -> Snapshot | None:
        return self._snapshot

    def listings(self, platform_id: str) -> list[MarketListing]:
        return list(self._listings.get(platform_id, {}).values())

    # Polling

    async def poll_once(self, platform_id: str) -> bool:
        """Fetch, normalize and store one platform's listings. Failures go to health, never raise."""
        adapter = self.adapters[platform_id]
        timeout = self.timeouts_sec[platform_id]
        started = self.clock()
        try:
            result = await asyncio.wait_for(adapter.fetch_listings(), timeout=timeout)
        except (TransportError, asyncio.TimeoutError) as e:
            error = str(e) if isinstance(e, TransportError) else f"timed out after {timeout}s"
            finished = self.clock()
            self.health.record_result(platform_id, False, finished, error=error)
            self.poll_stats.record_failure(platform_id, finished, finished - started, error)
            log.warning("poll_failed", platform=platform_id, error=error)
            return False

        fetched_at = result.fetched_at or started
        listings, rejected = normalize_batch(result.records, platform_id, fetched_at)
        prev = self._listings.get(platform_id, {})
        self._listings[platform_id] = {
            lst.external_id: carry_history(prev.get(lst.external_id), lst, self.history_retention_ms)
            for lst in listings
        }
        finished = self.clock()
        self.health.record_result(platform_id, True, finished)
        self.poll_stats.record_success(
            platform_id,
            finished,
            finished - started,
            listings=len(listings),
            skipped=result.skipped,
            rejected=rejected,
        )
        log.debug("poll_complete", platform=platform_id, listings=len(listings), rejected=rejected)
        if self._signals is not None:
            self._signals.put_nowait(platform_id)
        return True

    async def refresh(self) -> Snapshot | None:
        """Poll every platform concurrently once, then run a cycle."""
        await asyncio.gather(*(self.poll_once(pid) for pid in self.platforms))
        return await self.aggregate()

    async def aggregate(self) -> Snapshot | None:
        """Run a cycle in a worker thread over a copy of the current listings.

        Matching is CPU bound; off the loop, reads and poll timers keep running.
        """
        listings = {pid: list(by_id.values()) for pid, by_id in self._listings.items()}
        return await asyncio.to_thread(self.run_cycle, listings)

    async def _poll_loop(self, platform_id: str, stop: asyncio.Event) -> None:
        interval = self.poll_intervals_sec[platform_id]
        while not stop.is_set():
            # A poll in flight at shutdown finishes; stop is checked between polls
            await self.poll_once(platform_id)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def _aggregate_loop(self, stop: asyncio.Event, signals: asyncio.Queue[str]) -> None:
        while not stop.is_set():
            try:
                await asyncio.wait_for(signals.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            # Coalesce bursts of signals into one cycle
            while not signals.empty():
                signals.get_nowait()
            await self.aggregate()

    def start(self) -> None:
        """Start poll loops and the aggregation consumer on the running loop."""
        if self._tasks:
            return
        stop = self._stop = asyncio.Event()
        signals = self._signals = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._poll_loop(pid, stop), name=f"poll-{pid}")
            for pid in self.platforms
        ]
        self._tasks.append(asyncio.create_task(self._aggregate_loop(stop, signals), name="aggregate"))
        log.info("orchestrator_started", platforms=self.platforms)

    async def stop(self) -> None:
        if self._stop is None:
            return
        self._stop.set()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._stop = None
        self._signals = None
        log.info("orchestrator_stopped", cycles=self.cycles)

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run until stop_event is set."""
        self.start()
        await stop_event.wait()
        await self.stop()

    # Aggregation

    def _platform_states(self) -> tuple[list[str], list[str]]:
        stale: list[str] = []
        offline: list[str] = []
        for pid in self.platforms:
            rec = self.health.status(pid)
            if rec.status is PlatformStatus.OFFLINE:
                offline.append(pid)
            elif rec.status is PlatformStatus.DEGRADED or rec.is_stale:
                stale.append(pid)
        return stale, offline

    def run_cycle(self, listings_by_platform: dict[str, list[MarketListing]] | None = None) -> Snapshot | None:
        """Match, unify, detect and publish from whatever listings are on hand.

        Offline platforms are omitted; degraded ones are shown but excluded from pricing.
        With every platform offline the previous snapshot is kept as is. Cycles are
        serialized; a cycle may run on a worker thread.
        """
        if listings_by_platform is None:
            listings_by_platform = {pid: list(by_id.values()) for pid, by_id in self._listings.items()}
        with self._cycle_lock:
            return self._cycle(listings_by_platform)

    def _cycle(self, listings_by_platform: dict[str, list[MarketListing]]) -> Snapshot | None:
        stale, offline = self._platform_states()
        by_platform = {
            pid: listings_by_platform[pid]
            for pid in sorted(listings_by_platform)
            if pid not in offline and listings_by_platform[pid]
        }
        if not by_platform:
            if self._snapshot is not None:
                log.warning("cycle_skipped", reason="no usable platform data", offline=offline)
            return self._snapshot

        now = self.clock()
        candidates = self.matcher.match(by_platform)
        listings = [lst for group in by_platform.values() for lst in group]
        unified = self.unifier.unify(candidates, listings, stale)
        markets = [m.model_copy(update={"arbitrage": self.detector.detect(m)}) for m in unified]
        ranked = self.detector.detect_batch(markets)
        snapshot = Snapshot(
            markets=markets,
            trending=rank_trending(markets, now),
            arbitrage=[opp for _, opp in ranked],
            produced_at=now,
            stale_platforms=stale,
            offline_platforms=offline,
        )
        self._publish(snapshot)
        self._snapshot = snapshot
        self.cycles += 1
        log.info(
            "cycle_complete",
            listings=len(listings),
            candidates=len(candidates),
            unified=len(markets),
            arbitrage=len(snapshot.arbitrage),
            stale=stale,
            offline=offline,
        )
        return snapshot

    def _publish(self, snapshot: Snapshot) -> None:
        by_category: dict[str, list[UnifiedMarket]] = {}
        for m in snapshot.markets:
            if m.category:
                by_category.setdefault(m.category.strip().lower(), []).append(m)
        # Categories that emptied out are republished empty rather than left to serve old data
        for cat in self._published_categories - set(by_category):
            by_category[cat] = []
        for cat, markets in by_category.items():
            self.cache.put(category_key(cat), markets)
        self._published_categories = {c for c, ms in by_category.items() if ms}
        self.cache.put(category_key(ALL_CATEGORY), snapshot.markets)
        self.cache.put(TRENDING_KEY, snapshot.trending)
        self.cache.put(ARBITRAGE_KEY, snapshot.arbitrage)
        for m in snapshot.markets:
            self.cache.put(market_key(m.unified_id), m)

    # Reads

    def _view(self, markets: list[UnifiedMarket]) -> MarketsView:
        stale, offline = self._platform_states()
        all_offline = len(offline) == len(self.adapters)
        return MarketsView(
            markets=markets,
            is_stale=all_offline or bool(stale),
            stale_platforms=stale,
            offline_platforms=offline,
            produced_at=self._snapshot.produced_at if self._snapshot else None,
        )

    async def _read(self, key: str, default: Any) -> Any:
        async def loader() -> Any:
            await self.refresh()
            if self._snapshot is None:
                raise NoSnapshotError("no snapshot has been produced yet and every platform failed")
            payload = self.cache.peek(key)
            return default if payload is None else payload

        return await self.cache.get_or_refill(key, loader)

    def _is_published(self, key: str) -> bool:
        if key in (TRENDING_KEY, category_key(ALL_CATEGORY)):
            return True
        return key in {category_key(c) for c in self._published_categories}

    async def markets(self, category: str = ALL_CATEGORY) -> MarketsView:
        """Unified markets for a category, 'all', 'trending' or 'multi-outcome'. Never truncated.

        Once a snapshot exists, a category the last cycle did not publish is answered
        from the snapshot; only published keys refill from upstream on expiry.
        """
        name = category.strip().lower()
        if name == MULTI_OUTCOME:
            markets = await self._read(category_key(ALL_CATEGORY), [])
            return self._view([m for m in markets if m.is_multi_outcome])
        key = TRENDING_KEY if name == TRENDING_KEY else category_key(name)
        snapshot = self._snapshot
        if snapshot is not None and not self._is_published(key):
            return self._view([m for m in snapshot.markets if (m.category or "").strip().lower() == name])
        return self._view(await self._read(key, []))

    async def search(self, query: str) -> tuple[list[UnifiedMarket], int]:
        """Case-insensitive substring search over questions and categories. Returns (results, searched)."""
        term = query.strip().lower()
        if len(term) < MIN_SEARCH_LEN:
            raise ValueError(f"search query must be at least {MIN_SEARCH_LEN} characters")
        markets: list[UnifiedMarket] = await self._read(category_key(ALL_CATEGORY), [])
        results = [m for m in markets if term in _search_text(m)]
        log.debug("search", query=term, results=len(results), searched=len(markets))
        return results, len(markets)

    def price_history(self, unified_id: str, timeframe: str) -> list[PriceSeries]:
        """Carried price history per platform and outcome, sliced to the timeframe.

        ValueError for an unknown timeframe, KeyError for an unknown id.
        """
        tf = timeframe.strip().upper()
        if tf not in TIMEFRAMES_SEC:
            raise ValueError(f"invalid timeframe {timeframe!r}, use one of {', '.join(TIMEFRAMES_SEC)}")
        market = self.cache.peek(market_key(unified_id))
        if market is None and self._snapshot is not None:
            market = self._snapshot.find(unified_id)
        if market is None:
            raise KeyError(unified_id)

        window_sec = TIMEFRAMES_SEC[tf]
        cutoff = self.clock() - window_sec * 1000 if window_sec is not None else None
        series: list[PriceSeries] = []
        for pid, listed in sorted(market.platforms.items()):
            # Polls after the snapshot keep extending the history
            listing = self._listings.get(pid, {}).get(listed.external_id, listed)
            for o in listing.outcomes:
                points = [p for p in o.history if cutoff is None or p.t >= cutoff]
                series.append(PriceSeries(platform=pid, outcome=o.name, points=points))
        return series

    async def arbitrage_opportunities(self) -> list[ArbitrageOpportunity]:
        return await self._read(ARBITRAGE_KEY, [])

    async def live_market(self, unified_id: str) -> UnifiedMarket:
        """Refetch every constituent listing now, bypassing TTL. KeyError for an unknown id."""
        current = self.cache.peek(market_key(unified_id))
        if current is None and self._snapshot is not None:
            current = self._snapshot.find(unified_id)
        if current is None:
            raise KeyError(unified_id)

        _, offline = self._platform_states()
        refreshed: list[MarketListing] = []
        failed: set[str] = set()
        for pid, old in sorted(current.platforms.items()):
            if pid in offline or pid not in self.adapters:
                continue
            listing = await self._fetch_one(pid, old)
            if listing is None:
                failed.add(pid)
                listing = old
            refreshed.append(listing)
        if not refreshed:
            refreshed = list(current.platforms.values())

        stale, _ = self._platform_states()
        market = self.unifier.build_market(
            refreshed, set(stale) | failed, match_confidence=current.match_confidence
        )
        market = market.model_copy(update={"unified_id": unified_id, "trending_score": current.trending_score})
        market = market.model_copy(update={"arbitrage": self.detector.detect(market)})
        self.cache.put(market_key(unified_id), market)
        return market

    async def _fetch_one(self, platform_id: str, old: MarketListing) -> MarketListing | None:
        adapter = self.adapters[platform_id]
        timeout = self.timeouts_sec[platform_id]
        try:
            raw = await asyncio.wait_for(adapter.fetch_listing(old.external_id), timeout=timeout)
        except (TransportError, asyncio.TimeoutError) as e:
            error = str(e) if isinstance(e, TransportError) else f"timed out after {timeout}s"
            self.health.record_result(platform_id, False, self.clock(), error=error)
            log.warning("live_fetch_failed", platform=platform_id, external_id=old.external_id, error=error)
            return None
        self.health.record_result(platform_id, True, self.clock())
        if raw is None:
            log.info("live_listing_missing", platform=platform_id, external_id=old.external_id)
            return None
        listing = normalize(raw, platform_id, self.clock())
        if listing is None:
            return None
        listing = carry_history(old, listing, self.history_retention_ms)
        self._listings.setdefault(platform_id, {})[listing.external_id] = listing
        return listing

    def platform_health(self) -> dict[str, Any]:
        return self.health.all_status()

    def staleness_status(self) -> dict[str, dict[str, object]]:
        return self.health.staleness_status()
