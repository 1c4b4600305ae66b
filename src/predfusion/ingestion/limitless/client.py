"""Limitless Exchange REST adapter."""

from __future__ import annotations

from typing import Any

import httpx

from predfusion.errors import MalformedRecordError
from predfusion.ingestion.base import ProviderAdapter, parse_float

LIMITLESS_BASE_URL = "https://api.limitless.exchange/api-v1"


class LimitlessAdapter(ProviderAdapter):
    """GET /markets returns {data: [...]}; prices under `prices` ([yes, no] in percent) or `odds`."""

    platform_id = "limitless"

    def __init__(self, base_url: str = LIMITLESS_BASE_URL, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)

    async def _fetch_rows(self, client: httpx.AsyncClient) -> list[Any]:
        rows: list[Any] = []
        for page in range(1, self.max_pages + 1):
            data = await self._get_json(client, "/markets", {"page": page, "limit": self.page_size})
            if isinstance(data, dict):
                data = data.get("data", [])
            if not isinstance(data, list):
                break
            rows.extend(data)
            if len(data) < self.page_size:
                break
        return rows

    async def _fetch_row(self, client: httpx.AsyncClient, external_id: str) -> dict[str, Any] | None:
        data = await self._get_json(client, f"/markets/{external_id}", missing_ok=True)
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            return data["data"]
        return data if isinstance(data, dict) else None

    def map_record(self, raw: dict[str, Any]) -> dict[str, Any]:
        external_id = raw.get("id") or raw.get("slug")
        if external_id is None or external_id == "":
            raise MalformedRecordError("market without id")
        yes, no = _prices(raw)
        outcomes = []
        if yes is not None:
            outcomes.append({"name": "Yes", "price": yes})
        if no is not None:
            outcomes.append({"name": "No", "price": no})
        category = raw.get("category")
        if isinstance(category, dict):
            category = category.get("name")
        slug = raw.get("slug")
        return {
            "external_id": str(external_id),
            "question": raw.get("question") or raw.get("title") or "",
            "category": category,
            "outcomes": outcomes,
            "volume_24h": parse_float(raw.get("volume")),
            "liquidity": parse_float(raw.get("liquidity")),
            "end_time": raw.get("expiry") or raw.get("expirationTimestamp"),
            "start_time": raw.get("createdAt"),
            "url": f"https://limitless.exchange/markets/{slug}" if slug else None,
            "orderbook": None,
        }


def _prices(raw: dict[str, Any]) -> tuple[float | None, float | None]:
    prices = raw.get("prices")
    if isinstance(prices, list) and prices:
        yes = parse_float(prices[0])
        no = parse_float(prices[1]) if len(prices) > 1 else None
        # Percent quotes (e.g. [62.5, 37.5])
        if (yes is not None and yes > 1) or (no is not None and no > 1):
            yes = yes / 100.0 if yes is not None else None
            no = no / 100.0 if no is not None else None
        return yes, no
    odds = raw.get("odds")
    if isinstance(odds, dict):
        return parse_float(odds.get("yes")), parse_float(odds.get("no"))
    return None, None
