"""MarketListing, Outcome, OrderBook - canonical per-platform entities."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PriceLevel(BaseModel):
    """Single price level (price -> size)."""

    price: float = Field(..., ge=0, le=1)
    size: float = Field(..., ge=0)


class OrderBook(BaseModel):
    """Top-of-book levels for the YES side of a listing."""

    bids: list[PriceLevel] = Field(default_factory=list)
    asks: list[PriceLevel] = Field(default_factory=list)

    @property
    def best_bid(self) -> float | None:
        return max((lev.price for lev in self.bids), default=None)

    @property
    def best_ask(self) -> float | None:
        return min((lev.price for lev in self.asks), default=None)


class PricePoint(BaseModel):
    t: int  # ms epoch
    price: float = Field(..., ge=0, le=1)


class Outcome(BaseModel):
    """Single outcome (e.g. Yes/No) with its price history."""

    name: str
    price: float = Field(..., ge=0, le=1, description="Probability/price in [0, 1]")
    history: list[PricePoint] = Field(default_factory=list)


class MarketListing(BaseModel):
    """Normalized listing from one platform. At most one per (platform_id, external_id)."""

    platform_id: str
    external_id: str
    question: str = Field(..., min_length=1)
    category: str | None = None
    outcomes: list[Outcome] = Field(..., min_length=1)
    volume_24h: float = Field(0.0, ge=0)
    liquidity: float = Field(0.0, ge=0)
    spread: float | None = None
    end_time: int | None = None  # ms epoch
    start_time: int | None = None  # ms epoch
    fetched_at: int  # ms epoch
    orderbook: OrderBook | None = None
    url: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.platform_id, self.external_id)

    def outcome(self, name: str) -> Outcome | None:
        wanted = name.strip().lower()
        for o in self.outcomes:
            if o.name.strip().lower() == wanted:
                return o
        return None

    def price_of(self, name: str) -> float | None:
        o = self.outcome(name)
        return o.price if o is not None else None

    @property
    def yes_price(self) -> float | None:
        return self.price_of("yes")

    @property
    def no_price(self) -> float | None:
        return self.price_of("no")

    def entry_price(self, side: str) -> float | None:
        """Cheapest price a buyer pays for side ('yes'/'no'). YES prefers the book's best ask."""
        if side == "yes" and self.orderbook is not None and self.orderbook.best_ask is not None:
            return self.orderbook.best_ask
        return self.price_of(side)
