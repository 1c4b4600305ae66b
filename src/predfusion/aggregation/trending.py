"""Trending re-ranking of UnifiedMarkets by volume, liquidity, competitiveness and recency."""

from __future__ import annotations

import math

from predfusion.models import UnifiedMarket

_HOUR_MS = 60 * 60 * 1000


def trending_score(market: UnifiedMarket, now: int) -> float:
    volume = market.combined_volume
    liquidity = sum(lst.liquidity for lst in market.platforms.values())
    primary = max(market.platforms.values(), key=lambda lst: (lst.volume_24h, lst.platform_id))

    competitiveness = 1.0
    if len(primary.outcomes) >= 2:
        diff = abs(primary.outcomes[0].price - primary.outcomes[1].price)
        competitiveness = 1 + (1 - diff)

    recency = 1.0
    starts = [lst.start_time for lst in market.platforms.values() if lst.start_time is not None]
    if starts:
        age_hours = (now - min(starts)) / _HOUR_MS
        if age_hours < 48:
            recency = 1.5
        elif age_hours < 168:
            recency = 1.2

    score = (
        (volume / 24) * 0.3
        + math.log10(volume + 1) * 0.25
        + math.log10(liquidity + 1) * 0.15
        + competitiveness * 0.15
        + volume * 0.15
    ) * recency
    if len(primary.outcomes) > 2:
        score *= 1.2
    if len(market.platforms) > 1:
        score *= 1.2
    return round(score, 6)


def rank_trending(markets: list[UnifiedMarket], now: int) -> list[UnifiedMarket]:
    """Every market, scored and sorted by trending score (ties by id). Never truncated."""
    scored = [m.model_copy(update={"trending_score": trending_score(m, now)}) for m in markets]
    scored.sort(key=lambda m: (-(m.trending_score or 0.0), m.unified_id))
    return scored
