"""Unification, arbitrage, trending and the orchestrator."""

from predfusion.aggregation.arbitrage import ArbitrageDetector, arbitrage_stats
from predfusion.aggregation.orchestrator import MarketsView, Orchestrator, PriceSeries, Snapshot
from predfusion.aggregation.trending import rank_trending, trending_score
from predfusion.aggregation.unifier import Unifier, unified_id_for

__all__ = [
    "ArbitrageDetector",
    "MarketsView",
    "Orchestrator",
    "PriceSeries",
    "Snapshot",
    "Unifier",
    "arbitrage_stats",
    "rank_trending",
    "trending_score",
    "unified_id_for",
]
