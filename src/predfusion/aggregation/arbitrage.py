"""Cross-platform arbitrage detection on UnifiedMarkets. Pure: no I/O, no mutation."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from predfusion.models import ArbitrageOpportunity, ArbitrageStep, MarketListing, PriceQuote, UnifiedMarket

log = structlog.get_logger(__name__)

BASE_WARNINGS = (
    "Arbitrage opportunities may disappear quickly as other traders exploit them",
    "Consider transaction fees on both platforms (typically 2-5% total)",
    "Account for potential slippage if market liquidity is low",
    "Ensure you have sufficient funds on both platforms before executing",
    "Price may change between detection and execution",
)
LOW_MARGIN_PCT = 3.0
HIGH_MARGIN_PCT = 10.0


def _cents(price: float) -> str:
    return f"{price * 100:.1f}¢"


def _no_price(listing: MarketListing) -> float | None:
    no = listing.entry_price("no")
    if no is not None:
        return no
    yes = listing.price_of("yes")
    return round(1.0 - yes, 10) if yes is not None else None


@dataclass
class ArbitrageStats:
    count: int = 0
    avg_profit: float = 0.0
    max_profit: float = 0.0
    min_profit: float = 0.0
    total_potential_profit: float = 0.0


class ArbitrageDetector:
    """Buy YES on X and NO on Y; profit is what the pair pays out above its cost."""

    def __init__(self, min_profit_pct: float = 2.0) -> None:
        self.min_profit_pct = min_profit_pct

    def detect(self, market: UnifiedMarket) -> ArbitrageOpportunity:
        """Best YES/NO hedge across distinct non-stale platforms. Missing prices mean no opportunity."""
        stale = set(market.stale_platforms)
        listings = [lst for pid, lst in sorted(market.platforms.items()) if pid not in stale]
        none = ArbitrageOpportunity(unified_id=market.unified_id)
        if len(listings) < 2:
            return none

        best: tuple[float, float, MarketListing, float, MarketListing, float] | None = None
        for x in listings:
            yes = x.entry_price("yes")
            if yes is None:
                continue
            for y in listings:
                if y.platform_id == x.platform_id:
                    continue
                no = _no_price(y)
                if no is None:
                    continue
                cost = yes + no
                profit = round((1.0 - cost) * 100, 4)
                if best is None or profit > best[0]:
                    best = (profit, cost, x, yes, y, no)
        if best is None:
            return none

        profit, cost, x, yes, y, no = best
        exists = profit > self.min_profit_pct
        opp = ArbitrageOpportunity(
            unified_id=market.unified_id,
            exists=exists,
            profit_pct=profit,
            total_cost=round(cost, 6),
            buy_yes=PriceQuote(platform=x.platform_id, price=yes),
            buy_no=PriceQuote(platform=y.platform_id, price=no),
        )
        if not exists:
            return opp
        return opp.model_copy(
            update={
                "instructions": _steps(x.platform_id, yes, y.platform_id, no, profit),
                "summary": (
                    f"Buy YES on {x.platform_id} at {_cents(yes)}, buy NO on {y.platform_id} "
                    f"at {_cents(no)} for {profit:.2f}% profit"
                ),
                "warnings": warnings_for(profit),
            }
        )

    def detect_batch(self, markets: list[UnifiedMarket]) -> list[tuple[UnifiedMarket, ArbitrageOpportunity]]:
        """Existing opportunities only, highest profit first. An attached `arbitrage` is reused."""
        found = []
        for m in markets:
            opp = m.arbitrage if m.arbitrage is not None else self.detect(m)
            if opp.exists:
                found.append((m, opp))
        found.sort(key=lambda pair: (-pair[1].profit_pct, pair[0].unified_id))
        if found:
            log.info(
                "arbitrage_detected",
                count=len(found),
                best_profit_pct=found[0][1].profit_pct,
                best_unified_id=found[0][0].unified_id,
            )
        return found


def _steps(yes_platform: str, yes: float, no_platform: str, no: float, profit: float) -> list[ArbitrageStep]:
    return [
        ArbitrageStep(
            step=1,
            action="BUY",
            platform=yes_platform,
            outcome="YES",
            price=yes,
            description=f"Buy YES on {yes_platform} at {_cents(yes)}",
        ),
        ArbitrageStep(
            step=2,
            action="BUY",
            platform=no_platform,
            outcome="NO",
            price=no,
            description=f"Buy NO on {no_platform} at {_cents(no)} (hedges the YES position)",
        ),
        ArbitrageStep(
            step=3,
            action="PROFIT",
            description=(
                f"Collect {profit:.2f}¢ per $1 payout ({profit:.2f}% return before fees) "
                "whichever way the market resolves"
            ),
        ),
    ]


def warnings_for(profit_pct: float) -> list[str]:
    warnings = list(BASE_WARNINGS)
    if profit_pct < LOW_MARGIN_PCT:
        warnings.append("Low profit margin - fees may consume most or all of the profit")
    if profit_pct > HIGH_MARGIN_PCT:
        warnings.append("Unusually high profit margin - verify market data accuracy before executing")
    return warnings


def arbitrage_stats(opportunities: list[ArbitrageOpportunity]) -> ArbitrageStats:
    if not opportunities:
        return ArbitrageStats()
    profits = [o.profit_pct for o in opportunities]
    return ArbitrageStats(
        count=len(profits),
        avg_profit=round(sum(profits) / len(profits), 4),
        max_profit=max(profits),
        min_profit=min(profits),
        total_potential_profit=round(sum(profits), 4),
    )
