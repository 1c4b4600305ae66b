"""Scope-keyed cache with access-frequency TTL extension and single-flight refill."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from threading import Lock
from typing import Any

import structlog

from predfusion.clock import Clock, now_ms
from predfusion.config.settings import Settings

log = structlog.get_logger(__name__)

TRENDING_KEY = "trending"
ARBITRAGE_KEY = "arbitrage"
ALL_CATEGORY = "all"

SCOPES = ("category", "trending", "market", "arbitrage")


def category_key(category: str) -> str:
    return f"category:{category.strip().lower()}"


def market_key(unified_id: str) -> str:
    return f"market:{unified_id}"


def scope_of(key: str) -> str:
    if key == TRENDING_KEY:
        return "trending"
    if key == ARBITRAGE_KEY:
        return "arbitrage"
    if key.startswith("market:"):
        return "market"
    return "category"


@dataclass(frozen=True)
class AccessWindow:
    """Reads counted since window_start; the window lasts one TTL."""

    count: int = 0
    window_start: int = 0


def record_access(window: AccessWindow, now: int, window_ms: int) -> AccessWindow:
    """Count one read, opening a fresh window when the current one has elapsed."""
    if now - window.window_start >= window_ms:
        return AccessWindow(count=1, window_start=now)
    return AccessWindow(count=window.count + 1, window_start=window.window_start)


def next_ttl_ms(window: AccessWindow, base_ttl_ms: int, hot_reads: int, multiplier: float) -> int:
    """Base TTL, or base * multiplier when the window reached hot_reads. Never compounds."""
    if window.count >= hot_reads:
        return int(base_ttl_ms * multiplier)
    return base_ttl_ms


@dataclass
class CacheEntry:
    key: str
    payload: Any
    inserted_at: int
    expires_at: int
    ttl_ms: int
    version: int
    access: AccessWindow = field(default_factory=AccessWindow)
    last_access_at: int | None = None
    total_reads: int = 0


@dataclass
class CacheStats:
    hits: int
    misses: int
    hit_rate: float
    size_by_scope: dict[str, int]
    top_keys: list[tuple[str, int]]


class CacheManager:
    """Owns every CacheEntry. Expiry is lazy: an expired entry stays until its key is written again."""

    def __init__(
        self,
        ttl_sec_by_scope: dict[str, float] | None = None,
        *,
        hot_key_reads: int = 5,
        ttl_extension_multiplier: float = 2.0,
        clock: Clock = now_ms,
    ) -> None:
        ttls = {"category": 60.0, "trending": 15.0, "market": 30.0, "arbitrage": 15.0}
        ttls.update(ttl_sec_by_scope or {})
        self.ttl_ms_by_scope = {scope: int(sec * 1000) for scope, sec in ttls.items()}
        self.hot_key_reads = hot_key_reads
        self.multiplier = ttl_extension_multiplier
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = Lock()
        self._refill_locks: dict[str, asyncio.Lock] = {}
        self._refill_waiters: dict[str, int] = {}
        self._version = 0
        self.hits = 0
        self.misses = 0

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = now_ms) -> CacheManager:
        return cls(
            {
                "category": settings.ttl_category_sec,
                "trending": settings.ttl_trending_sec,
                "market": settings.ttl_market_sec,
                "arbitrage": settings.ttl_trending_sec,
            },
            hot_key_reads=settings.hot_key_reads,
            ttl_extension_multiplier=settings.ttl_extension_multiplier,
            clock=clock,
        )

    def base_ttl_ms(self, key: str) -> int:
        return self.ttl_ms_by_scope[scope_of(key)]

    def get(self, key: str) -> tuple[Any, bool]:
        """Return (payload, hit). A miss returns (None, False)."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now >= entry.expires_at:
                self.misses += 1
                return None, False
            entry.access = record_access(entry.access, now, entry.ttl_ms)
            entry.last_access_at = now
            entry.total_reads += 1
            self.hits += 1
            return entry.payload, True

    def peek(self, key: str) -> Any:
        """Payload regardless of expiry, without counting a read. None if never written."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.payload if entry is not None else None

    def entry(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, payload: Any, base_ttl_sec: float | None = None) -> CacheEntry:
        """Store payload. A key read hot_key_reads times in its window gets an extended TTL."""
        now = self._clock()
        base_ms = int(base_ttl_sec * 1000) if base_ttl_sec is not None else self.base_ttl_ms(key)
        with self._lock:
            prev = self._entries.get(key)
            window = prev.access if prev is not None else AccessWindow()
            ttl_ms = next_ttl_ms(window, base_ms, self.hot_key_reads, self.multiplier)
            self._version += 1
            entry = CacheEntry(
                key=key,
                payload=payload,
                inserted_at=now,
                expires_at=now + ttl_ms,
                ttl_ms=ttl_ms,
                version=self._version,
                access=AccessWindow(count=0, window_start=now),
                last_access_at=prev.last_access_at if prev is not None else None,
                total_reads=prev.total_reads if prev is not None else 0,
            )
            self._entries[key] = entry
        if ttl_ms != base_ms:
            log.info("cache_ttl_extended", key=key, reads=window.count, ttl_ms=ttl_ms, base_ttl_ms=base_ms)
        return entry

    def _fresh(self, key: str) -> CacheEntry | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now >= entry.expires_at:
                return None
            return entry

    async def get_or_refill(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        base_ttl_sec: float | None = None,
    ) -> Any:
        """Cached payload, or run loader once per key however many callers miss together."""
        payload, hit = self.get(key)
        if hit:
            return payload
        lock = self._refill_locks.setdefault(key, asyncio.Lock())
        self._refill_waiters[key] = self._refill_waiters.get(key, 0) + 1
        try:
            async with lock:
                entry = self._fresh(key)
                if entry is not None:
                    return entry.payload
                before = self._version
                payload = await loader()
                entry = self._fresh(key)
                # The loader may publish the key itself (e.g. a full aggregation cycle)
                if entry is not None and entry.version > before:
                    return entry.payload
                self.put(key, payload, base_ttl_sec)
                return payload
        finally:
            # Last waiter out drops the lock
            self._refill_waiters[key] -= 1
            if not self._refill_waiters[key]:
                del self._refill_waiters[key]
                del self._refill_locks[key]

    def refill_keys(self) -> list[str]:
        """Keys with a refill in flight or queued."""
        return sorted(self._refill_locks)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)

    def stats(self, top_n: int = 5) -> CacheStats:
        with self._lock:
            size_by_scope = {scope: 0 for scope in SCOPES}
            for key in self._entries:
                size_by_scope[scope_of(key)] += 1
            reads = sorted(
                ((k, e.total_reads) for k, e in self._entries.items() if e.total_reads > 0),
                key=lambda kv: (-kv[1], kv[0]),
            )
            total = self.hits + self.misses
            return CacheStats(
                hits=self.hits,
                misses=self.misses,
                hit_rate=round(self.hits / total, 4) if total else 0.0,
                size_by_scope=size_by_scope,
                top_keys=reads[:top_n],
            )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0
        log.info("cache_cleared")
