"""Shared fixtures: fake clock, fake adapters, listing factories."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from predfusion.errors import TransportError
from predfusion.ingestion.base import FetchResult, ProviderAdapter
from predfusion.models import MarketListing, Outcome

T0 = 1_700_000_000_000  # ms epoch
DAY_MS = 24 * 60 * 60 * 1000


class FakeClock:
    def __init__(self, start: int = T0) -> None:
        self.t = start

    def __call__(self) -> int:
        return self.t

    def advance(self, ms: int = 0, *, sec: float = 0) -> None:
        self.t += int(ms + sec * 1000)


class FakeAdapter(ProviderAdapter):
    """Serves canned records in the common raw shape; can be switched to fail."""

    def __init__(self, platform_id: str, records: list[dict[str, Any]] | None = None, *, clock=None) -> None:
        self.platform_id = platform_id
        super().__init__("http://fake.invalid", clock=clock or FakeClock())
        self.records = list(records or [])
        self.fail = False
        self.calls = 0
        self.single_calls = 0

    async def fetch_listings(self) -> FetchResult:
        self.calls += 1
        await asyncio.sleep(0.01)
        if self.fail:
            raise TransportError(self.platform_id, "simulated outage")
        return FetchResult(self.platform_id, [dict(r) for r in self.records], 0, self._clock())

    async def fetch_listing(self, external_id: str) -> dict[str, Any] | None:
        self.single_calls += 1
        if self.fail:
            raise TransportError(self.platform_id, "simulated outage")
        return next((dict(r) for r in self.records if r["external_id"] == external_id), None)

    async def _fetch_rows(self, client):
        return list(self.records)

    async def _fetch_row(self, client, external_id):
        return None

    def map_record(self, raw):
        return raw


def raw_record(
    external_id: str,
    question: str,
    yes: float,
    no: float | None = None,
    *,
    category: str | None = "Politics",
    volume: float = 10_000,
    liquidity: float = 5_000,
    end_time: int | None = T0 + 30 * DAY_MS,
) -> dict[str, Any]:
    outcomes = [{"name": "Yes", "price": yes}]
    if no is not None:
        outcomes.append({"name": "No", "price": no})
    return {
        "external_id": external_id,
        "question": question,
        "category": category,
        "outcomes": outcomes,
        "volume_24h": volume,
        "liquidity": liquidity,
        "end_time": end_time,
    }


def listing(
    platform_id: str,
    external_id: str,
    question: str = "Will Donald Trump win the 2024 election?",
    yes: float | None = 0.5,
    no: float | None = None,
    *,
    category: str | None = "Politics",
    volume: float = 10_000,
    liquidity: float = 5_000,
    end_time: int | None = T0 + 30 * DAY_MS,
    start_time: int | None = None,
    spread: float | None = None,
    fetched_at: int = T0,
) -> MarketListing:
    outcomes = []
    if yes is not None:
        outcomes.append(Outcome(name="Yes", price=yes))
    if no is not None:
        outcomes.append(Outcome(name="No", price=no))
    return MarketListing(
        platform_id=platform_id,
        external_id=external_id,
        question=question,
        category=category,
        outcomes=outcomes or [Outcome(name="Other", price=0.5)],
        volume_24h=volume,
        liquidity=liquidity,
        spread=spread,
        end_time=end_time,
        start_time=start_time,
        fetched_at=fetched_at,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_listing():
    return listing


@pytest.fixture
def make_raw():
    return raw_record


@pytest.fixture
def fake_adapter(clock):
    def factory(platform_id: str, records: list[dict[str, Any]] | None = None) -> FakeAdapter:
        return FakeAdapter(platform_id, records, clock=clock)

    return factory
