"""Abstract provider adapter for pluggable platforms (Polymarket, Kalshi, Limitless, ...)."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from predfusion.clock import Clock, now_ms
from predfusion.errors import MalformedRecordError, TransportError
from predfusion.ingestion.rate_limit import TokenBucket

log = structlog.get_logger(__name__)


@dataclass
class FetchResult:
    """Platform records mapped to the common raw shape, plus how many were skipped."""

    platform_id: str
    records: list[dict[str, Any]] = field(default_factory=list)
    skipped: int = 0
    fetched_at: int = 0  # ms epoch


class ProviderAdapter(ABC):
    """Fetch raw listings from one platform and map them to the common raw shape.

    The common shape is a dict with keys: external_id, question, category,
    outcomes ([{name, price}]), volume_24h, liquidity, end_time, start_time,
    url and optionally orderbook ({bids, asks}). Values are not validated here;
    the Normalizer clamps and rejects.

    Transport, auth and undecodable-body failures raise TransportError. A single
    record that cannot be mapped is skipped and counted, never raised.
    """

    platform_id: str = ""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_sec: float = 8.0,
        rate_per_min: int = 60,
        page_size: int = 500,
        max_pages: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self.page_size = page_size
        self.max_pages = max(1, max_pages)
        self.limiter = TokenBucket.per_minute(rate_per_min)
        self._transport = transport
        self._clock = clock

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_sec,
            headers=self._headers(),
            transport=self._transport,
        )

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        missing_ok: bool = False,
    ) -> Any:
        """GET path and decode JSON. With missing_ok, a 404 returns None instead of raising."""
        await self.limiter.acquire()
        try:
            resp = await client.get(path, params=params)
            if missing_ok and resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            raise TransportError(self.platform_id, f"HTTP {e.response.status_code} for {path}") from e
        except httpx.HTTPError as e:
            raise TransportError(self.platform_id, f"{type(e).__name__}: {e}") from e
        except (json.JSONDecodeError, ValueError) as e:
            raise TransportError(self.platform_id, f"undecodable body for {path}") from e

    def _map_all(self, rows: list[Any]) -> tuple[list[dict[str, Any]], int]:
        records: list[dict[str, Any]] = []
        skipped = 0
        for row in rows:
            try:
                if not isinstance(row, dict):
                    raise MalformedRecordError(f"expected object, got {type(row).__name__}")
                records.append(self.map_record(row))
            except (MalformedRecordError, KeyError, TypeError, ValueError) as e:
                skipped += 1
                log.warning("record_skipped", platform=self.platform_id, error=str(e))
        return records, skipped

    async def fetch_listings(self) -> FetchResult:
        """Fetch every page of open listings and map them."""
        async with self._client() as client:
            rows = await self._fetch_rows(client)
        records, skipped = self._map_all(rows)
        log.debug("fetch_complete", platform=self.platform_id, records=len(records), skipped=skipped)
        return FetchResult(
            platform_id=self.platform_id,
            records=records,
            skipped=skipped,
            fetched_at=self._clock(),
        )

    async def fetch_listing(self, external_id: str) -> dict[str, Any] | None:
        """Fetch and map one listing by its platform id; None if the platform does not know it."""
        async with self._client() as client:
            row = await self._fetch_row(client, external_id)
        if row is None:
            return None
        records, _ = self._map_all([row])
        return records[0] if records else None

    @abstractmethod
    async def _fetch_rows(self, client: httpx.AsyncClient) -> list[Any]:
        """Return raw platform rows across pages."""
        ...

    @abstractmethod
    async def _fetch_row(self, client: httpx.AsyncClient, external_id: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    def map_record(self, raw: dict[str, Any]) -> dict[str, Any]:
        """Map one platform row to the common raw shape. Raise on unusable rows."""
        ...


def parse_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_json_list(value: Any) -> list[Any]:
    """Gamma-style fields arrive either as lists or JSON-encoded strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value:
        try:
            loaded = json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return []
        return loaded if isinstance(loaded, list) else []
    return []
