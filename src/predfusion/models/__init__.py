"""Canonical schema (Pydantic) - listings, unified markets, health."""

from predfusion.models.health import PlatformHealthRecord, PlatformStatus
from predfusion.models.market import MarketListing, OrderBook, Outcome, PriceLevel, PricePoint
from predfusion.models.unified import (
    ArbitrageOpportunity,
    ArbitrageStep,
    BestPrice,
    MatchCandidate,
    MatchedEntities,
    MatchStrength,
    PriceQuote,
    RoutingRecommendation,
    UnifiedMarket,
)

__all__ = [
    "MarketListing",
    "Outcome",
    "OrderBook",
    "PriceLevel",
    "PricePoint",
    "MatchCandidate",
    "MatchedEntities",
    "MatchStrength",
    "UnifiedMarket",
    "BestPrice",
    "PriceQuote",
    "RoutingRecommendation",
    "ArbitrageOpportunity",
    "ArbitrageStep",
    "PlatformHealthRecord",
    "PlatformStatus",
]
