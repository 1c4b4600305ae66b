"""Kalshi trade API v2 adapter. Prices are quoted in cents."""

from __future__ import annotations

from typing import Any

import httpx

from predfusion.errors import MalformedRecordError
from predfusion.ingestion.base import ProviderAdapter, parse_float

KALSHI_BASE_URL = "https://api.elections.kalshi.com/trade-api/v2"


def _cents(value: Any) -> float | None:
    v = parse_float(value)
    if v is None or v <= 0:
        return None
    return v / 100.0


class KalshiAdapter(ProviderAdapter):
    """GET /markets?status=open with cursor pagination; optional bearer credential."""

    platform_id = "kalshi"

    def __init__(self, base_url: str = KALSHI_BASE_URL, *, api_key: str | None = None, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)
        self.api_key = api_key

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _fetch_rows(self, client: httpx.AsyncClient) -> list[Any]:
        rows: list[Any] = []
        cursor: str | None = None
        for _ in range(self.max_pages):
            params: dict[str, Any] = {"status": "open", "limit": self.page_size}
            if cursor:
                params["cursor"] = cursor
            data = await self._get_json(client, "/markets", params)
            if not isinstance(data, dict):
                break
            rows.extend(data.get("markets") or [])
            cursor = data.get("cursor") or None
            if not cursor:
                break
        return rows

    async def _fetch_row(self, client: httpx.AsyncClient, external_id: str) -> dict[str, Any] | None:
        data = await self._get_json(client, f"/markets/{external_id}", missing_ok=True)
        if not isinstance(data, dict):
            return None
        market = data.get("market", data)
        return market if isinstance(market, dict) else None

    def map_record(self, raw: dict[str, Any]) -> dict[str, Any]:
        ticker = raw.get("ticker")
        if not ticker:
            raise MalformedRecordError("market without ticker")
        yes_bid = _cents(raw.get("yes_bid"))
        yes_ask = _cents(raw.get("yes_ask"))
        yes = yes_ask if yes_ask is not None else yes_bid
        no = _cents(raw.get("no_ask"))
        if no is None:
            no = _cents(raw.get("no_bid"))
        outcomes = []
        if yes is not None:
            outcomes.append({"name": "Yes", "price": yes})
        if no is not None:
            outcomes.append({"name": "No", "price": no})
        orderbook = None
        if yes_bid is not None or yes_ask is not None:
            orderbook = {
                "bids": [{"price": yes_bid, "size": 0.0}] if yes_bid is not None else [],
                "asks": [{"price": yes_ask, "size": 0.0}] if yes_ask is not None else [],
            }
        question = raw.get("title") or ""
        subtitle = raw.get("yes_sub_title") or raw.get("subtitle")
        if question and subtitle and subtitle not in question:
            question = f"{question} ({subtitle})"
        return {
            "external_id": str(ticker),
            "question": question,
            "category": raw.get("category"),
            "outcomes": outcomes,
            "volume_24h": parse_float(raw.get("volume_24h")) or parse_float(raw.get("volume")),
            "liquidity": parse_float(raw.get("liquidity")) or parse_float(raw.get("open_interest")),
            "end_time": raw.get("close_time") or raw.get("expiration_time"),
            "start_time": raw.get("open_time"),
            "url": f"https://kalshi.com/markets/{ticker}",
            "orderbook": orderbook,
        }
