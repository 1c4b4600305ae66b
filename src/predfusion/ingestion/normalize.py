"""Common raw shape -> canonical MarketListing. Clamps, coerces and rejects; never raises for a batch."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import ValidationError

from predfusion.errors import MalformedRecordError
from predfusion.models import MarketListing, OrderBook, Outcome, PricePoint

log = structlog.get_logger(__name__)


def _float(v: Any) -> float | None:
    if v is None or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def clamp_price(v: Any) -> float | None:
    f = _float(v)
    if f is None:
        return None
    return min(1.0, max(0.0, f))


def _non_negative(v: Any) -> float:
    f = _float(v)
    return f if f is not None and f > 0 else 0.0


def parse_time_ms(v: Any) -> int | None:
    """ISO-8601 string, epoch seconds or epoch ms -> ms epoch."""
    if v is None or v == "" or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        if not math.isfinite(v):
            return None
        return int(v) if v >= 1e12 else int(v * 1000)
    if isinstance(v, str):
        s = v.strip()
        num = _float(s)
        if num is not None:
            return parse_time_ms(num)
        try:
            dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    return None


def derive_spread(outcomes: list[Outcome]) -> float | None:
    """Binary: |1 - (yes + no)|. Multi-outcome: mean deviation from a uniform 1/n book."""
    n = len(outcomes)
    if n < 2:
        return None
    if n == 2:
        return round(abs(1.0 - (outcomes[0].price + outcomes[1].price)), 6)
    fair = 1.0 / n
    return round(sum(abs(o.price - fair) for o in outcomes) / n, 6)


def _outcomes(raw_outcomes: Any) -> list[Outcome]:
    out: list[Outcome] = []
    if not isinstance(raw_outcomes, list):
        return out
    seen: set[str] = set()
    for item in raw_outcomes:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        price = clamp_price(item.get("price"))
        if not name or price is None or name.lower() in seen:
            continue
        seen.add(name.lower())
        out.append(Outcome(name=name, price=price))
    return out


def _orderbook(raw: Any) -> OrderBook | None:
    if not isinstance(raw, dict):
        return None
    sides: dict[str, list[dict[str, float]]] = {"bids": [], "asks": []}
    for side in sides:
        for lev in raw.get(side) or []:
            if not isinstance(lev, dict):
                continue
            price = clamp_price(lev.get("price"))
            if price is None:
                continue
            sides[side].append({"price": price, "size": _non_negative(lev.get("size"))})
    if not sides["bids"] and not sides["asks"]:
        return None
    return OrderBook.model_validate(sides)


def _build(raw: dict[str, Any], platform_id: str, fetched_at: int) -> MarketListing:
    external_id = str(raw.get("external_id") or "").strip()
    if not external_id:
        raise MalformedRecordError("missing external_id")
    question = str(raw.get("question") or "").strip()
    if not question:
        raise MalformedRecordError("missing question")
    outcomes = _outcomes(raw.get("outcomes"))
    if not outcomes:
        raise MalformedRecordError("no priced outcomes")
    category = raw.get("category")
    try:
        return MarketListing(
            platform_id=platform_id,
            external_id=external_id,
            question=question,
            category=str(category).strip() or None if category else None,
            outcomes=outcomes,
            volume_24h=_non_negative(raw.get("volume_24h")),
            liquidity=_non_negative(raw.get("liquidity")),
            spread=derive_spread(outcomes),
            end_time=parse_time_ms(raw.get("end_time")),
            start_time=parse_time_ms(raw.get("start_time")),
            fetched_at=fetched_at,
            orderbook=_orderbook(raw.get("orderbook")),
            url=raw.get("url") or None,
        )
    except ValidationError as e:
        raise MalformedRecordError(str(e)) from e


def normalize(raw: dict[str, Any], platform_id: str, fetched_at: int) -> MarketListing | None:
    """Validate one raw record. Returns None (and logs) when the record is rejected."""
    try:
        if not isinstance(raw, dict):
            raise MalformedRecordError(f"expected dict, got {type(raw).__name__}")
        return _build(raw, platform_id, fetched_at)
    except MalformedRecordError as e:
        log.warning(
            "listing_rejected",
            platform=platform_id,
            external_id=raw.get("external_id") if isinstance(raw, dict) else None,
            reason=str(e),
        )
        return None


def normalize_batch(
    records: list[dict[str, Any]], platform_id: str, fetched_at: int
) -> tuple[list[MarketListing], int]:
    """Normalize a batch; returns (listings, rejected). Later duplicates of an external_id are dropped."""
    listings: list[MarketListing] = []
    seen: set[str] = set()
    rejected = 0
    for raw in records:
        listing = normalize(raw, platform_id, fetched_at)
        if listing is None:
            rejected += 1
            continue
        if listing.external_id in seen:
            log.debug("duplicate_listing", platform=platform_id, external_id=listing.external_id)
            continue
        seen.add(listing.external_id)
        listings.append(listing)
    return listings, rejected


def carry_history(prev: MarketListing | None, cur: MarketListing, retention_ms: int) -> MarketListing:
    """Append (fetched_at, price) to each outcome's history carried from prev; prune past the horizon.

    Points are only appended when strictly newer than the last one, keeping each series monotonic.
    """
    horizon = cur.fetched_at - retention_ms
    outcomes: list[Outcome] = []
    for o in cur.outcomes:
        history: list[PricePoint] = []
        if prev is not None:
            old = prev.outcome(o.name)
            if old is not None:
                history = [p for p in old.history if p.t >= horizon]
        if not history or cur.fetched_at > history[-1].t:
            history.append(PricePoint(t=cur.fetched_at, price=o.price))
        outcomes.append(o.model_copy(update={"history": history}))
    return cur.model_copy(update={"outcomes": outcomes})
