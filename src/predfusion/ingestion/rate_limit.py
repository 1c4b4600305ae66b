"""Per-platform request budget (Polymarket 100/min, Kalshi 50/min, Limitless 30/min)."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from threading import Lock


class TokenBucket:
    """Refills `rate` tokens per second up to `capacity`. Async callers sleep off the deficit."""

    def __init__(
        self,
        rate: float,
        capacity: int = 1,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.capacity = max(1, capacity)
        self.tokens = float(self.capacity)
        self._monotonic = monotonic
        self._updated = monotonic()
        self._lock = Lock()

    @classmethod
    def per_minute(cls, requests_per_min: int) -> TokenBucket:
        """Budget of requests_per_min, bursting up to a tenth of it."""
        return cls(rate=max(1, requests_per_min) / 60.0, capacity=requests_per_min // 10)

    def try_take(self, n: int = 1) -> float:
        """Take n tokens if available and return 0, else return seconds until they would be."""
        with self._lock:
            now = self._monotonic()
            self.tokens = min(self.capacity, self.tokens + (now - self._updated) * self.rate)
            self._updated = now
            if self.tokens >= n:
                self.tokens -= n
                return 0.0
            return (n - self.tokens) / self.rate

    async def acquire(self, n: int = 1) -> None:
        wait = self.try_take(n)
        while wait > 0:
            await asyncio.sleep(wait)
            wait = self.try_take(n)
