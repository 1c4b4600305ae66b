"""Scope-keyed cache."""

from predfusion.cache.manager import (
    ALL_CATEGORY,
    ARBITRAGE_KEY,
    TRENDING_KEY,
    AccessWindow,
    CacheManager,
    CacheStats,
    category_key,
    market_key,
    record_access,
)

__all__ = [
    "ALL_CATEGORY",
    "ARBITRAGE_KEY",
    "TRENDING_KEY",
    "AccessWindow",
    "CacheManager",
    "CacheStats",
    "category_key",
    "market_key",
    "record_access",
]
