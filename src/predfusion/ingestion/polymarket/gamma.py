"""Polymarket Gamma API adapter - market discovery and prices."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from predfusion.errors import MalformedRecordError
from predfusion.ingestion.base import ProviderAdapter, parse_float, parse_json_list

log = structlog.get_logger(__name__)

GAMMA_BASE_URL = "https://gamma-api.polymarket.com"


def _parse_outcomes(
    outcomes_str: str | list[str] | None,
    prices_str: str | list[str] | None,
) -> list[dict[str, Any]]:
    """Build outcome dicts from Gamma outcome fields (may be JSON strings). Unpriced outcomes are dropped."""
    names = parse_json_list(outcomes_str)
    prices = parse_json_list(prices_str)
    out = []
    for i, name in enumerate(names):
        price = parse_float(prices[i]) if i < len(prices) else None
        if price is None:
            continue
        out.append({"name": str(name), "price": price})
    return out


class PolymarketAdapter(ProviderAdapter):
    """Gamma REST: GET /markets?active=true&closed=false with offset pagination."""

    platform_id = "polymarket"

    def __init__(self, base_url: str = GAMMA_BASE_URL, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)

    async def _fetch_rows(self, client: httpx.AsyncClient) -> list[Any]:
        rows: list[Any] = []
        for page in range(self.max_pages):
            params = {
                "active": "true",
                "closed": "false",
                "limit": self.page_size,
                "offset": page * self.page_size,
            }
            data = await self._get_json(client, "/markets", params)
            if isinstance(data, dict):
                data = data.get("data", [])
            if not isinstance(data, list):
                break
            rows.extend(r for r in data if not (isinstance(r, dict) and r.get("closed") is True))
            if len(data) < self.page_size:
                break
        return rows

    async def _fetch_row(self, client: httpx.AsyncClient, external_id: str) -> dict[str, Any] | None:
        data = await self._get_json(client, f"/markets/{external_id}", missing_ok=True)
        return data if isinstance(data, dict) else None

    def map_record(self, raw: dict[str, Any]) -> dict[str, Any]:
        external_id = str(raw.get("id") or raw.get("conditionId") or "")
        if not external_id:
            raise MalformedRecordError("market without id")
        slug = raw.get("slug")
        return {
            "external_id": external_id,
            "question": raw.get("question") or raw.get("title") or "",
            "category": raw.get("category"),
            "outcomes": _parse_outcomes(raw.get("outcomes"), raw.get("outcomePrices")),
            "volume_24h": parse_float(raw.get("volume24hr")) or parse_float(raw.get("volume")),
            "liquidity": parse_float(raw.get("liquidity")) or parse_float(raw.get("liquidityNum")),
            "end_time": raw.get("endDate"),
            "start_time": raw.get("startDate"),
            "url": f"https://polymarket.com/market/{slug}" if slug else None,
            "orderbook": _top_of_book(raw),
        }


def _top_of_book(raw: dict[str, Any]) -> dict[str, Any] | None:
    bid = parse_float(raw.get("bestBid"))
    ask = parse_float(raw.get("bestAsk"))
    if bid is None and ask is None:
        return None
    return {
        "bids": [{"price": bid, "size": 0.0}] if bid is not None else [],
        "asks": [{"price": ask, "size": 0.0}] if ask is not None else [],
    }
