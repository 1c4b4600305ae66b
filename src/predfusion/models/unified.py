"""MatchCandidate, UnifiedMarket, ArbitrageOpportunity - cross-platform entities."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from predfusion.models.market import MarketListing


class MatchStrength(str, Enum):
    STRONG = "strong"  # >= identical threshold
    CANDIDATE = "candidate"  # >= similar threshold
    AMBIGUOUS = "ambiguous"  # just below similar threshold, kept for audit only


class MatchedEntities(BaseModel):
    names: list[str] = Field(default_factory=list)
    dates: list[str] = Field(default_factory=list)
    event_keywords: list[str] = Field(default_factory=list)


class MatchCandidate(BaseModel):
    """Scored pair of listings from different platforms. listing_a sorts before listing_b."""

    listing_a: MarketListing
    listing_b: MarketListing
    confidence: float = Field(..., ge=0, le=1)
    text_score: float = 0.0
    entity_score: float = 0.0
    temporal_score: float = 0.0
    strength: MatchStrength
    ambiguous: bool = False  # inside the audit band around the similar threshold
    matched_entities: MatchedEntities = Field(default_factory=MatchedEntities)

    @property
    def qualifies(self) -> bool:
        return self.strength is not MatchStrength.AMBIGUOUS


class PriceQuote(BaseModel):
    platform: str | None = None
    price: float | None = None


class BestPrice(BaseModel):
    yes: PriceQuote = Field(default_factory=PriceQuote)
    no: PriceQuote = Field(default_factory=PriceQuote)


class RoutingRecommendation(BaseModel):
    platform: str | None = None
    reason: str
    price: float | None = None
    liquidity: float | None = None


class ArbitrageStep(BaseModel):
    step: int
    action: str  # BUY | PROFIT
    platform: str | None = None
    outcome: str | None = None
    price: float | None = None
    description: str


class ArbitrageOpportunity(BaseModel):
    """Freshly derived on every unification pass; never patched in place."""

    unified_id: str
    exists: bool = False
    profit_pct: float = 0.0  # pre-fee, percent of $1 payout
    total_cost: float | None = None
    buy_yes: PriceQuote | None = None
    buy_no: PriceQuote | None = None
    instructions: list[ArbitrageStep] = Field(default_factory=list)
    summary: str | None = None
    warnings: list[str] = Field(default_factory=list)


class UnifiedMarket(BaseModel):
    """One real-world event, merged across 1..N platform listings."""

    unified_id: str
    canonical_question: str
    category: str | None = None
    end_time: int | None = None
    platforms: dict[str, MarketListing]
    best_price: BestPrice = Field(default_factory=BestPrice)
    best_liquidity_platform: str | None = None
    combined_volume: float = 0.0
    liquidity_score: int = 1
    match_confidence: float = 1.0
    criteria_mismatch: bool = False
    routing_recommendations: dict[str, RoutingRecommendation] = Field(default_factory=dict)
    stale_platforms: list[str] = Field(default_factory=list)
    needs_review: bool = False
    arbitrage: ArbitrageOpportunity | None = None
    trending_score: float | None = None

    @property
    def is_multi_outcome(self) -> bool:
        """Some platform lists more than a YES/NO pair."""
        return any(len(lst.outcomes) > 2 for lst in self.platforms.values())
