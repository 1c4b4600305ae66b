"""Provider adapters and the normalizer."""

from predfusion.ingestion.base import FetchResult, ProviderAdapter
from predfusion.ingestion.kalshi.client import KalshiAdapter
from predfusion.ingestion.limitless.client import LimitlessAdapter
from predfusion.ingestion.polymarket.gamma import PolymarketAdapter

ADAPTERS: dict[str, type[ProviderAdapter]] = {
    "polymarket": PolymarketAdapter,
    "kalshi": KalshiAdapter,
    "limitless": LimitlessAdapter,
}

__all__ = [
    "ADAPTERS",
    "FetchResult",
    "KalshiAdapter",
    "LimitlessAdapter",
    "PolymarketAdapter",
    "ProviderAdapter",
]
