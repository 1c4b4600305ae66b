"""Cluster match candidates into UnifiedMarkets with derived pricing, liquidity and routing."""

from __future__ import annotations

import hashlib
from collections.abc import Collection, Iterable

import structlog

from predfusion.config.settings import Settings
from predfusion.matching import Matcher
from predfusion.models import (
    BestPrice,
    MarketListing,
    MatchCandidate,
    PriceQuote,
    RoutingRecommendation,
    UnifiedMarket,
)

log = structlog.get_logger(__name__)

Key = tuple[str, str]

GENERIC_CATEGORIES = frozenset({"", "all", "other", "others", "general", "misc", "uncategorized"})
CRITERIA_MISMATCH_DAYS = 7
_DAY_MS = 24 * 60 * 60 * 1000


def unified_id_for(listings: Iterable[MarketListing]) -> str:
    """Stable id: hash of the sorted platform:external_id members."""
    members = sorted(f"{lst.platform_id}:{lst.external_id}" for lst in listings)
    digest = hashlib.sha1(",".join(members).encode("utf-8")).hexdigest()
    return f"unified-{digest[:16]}"


class _DisjointSet:
    """Union-find over listing keys that tracks the platforms each root holds."""

    def __init__(self, listings: Iterable[MarketListing]) -> None:
        self.parent: dict[Key, Key] = {}
        self.platforms: dict[Key, set[str]] = {}
        for lst in listings:
            self.parent[lst.key] = lst.key
            self.platforms[lst.key] = {lst.platform_id}

    def find(self, k: Key) -> Key:
        root = k
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[k] != root:
            self.parent[k], k = root, self.parent[k]
        return root

    def union(self, a: Key, b: Key) -> bool:
        """Merge unless the two sides already share a platform. Returns True when merged."""
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return False
        if self.platforms[ra] & self.platforms[rb]:
            return False
        if rb < ra:
            ra, rb = rb, ra
        self.parent[rb] = ra
        self.platforms[ra] |= self.platforms.pop(rb)
        return True


class Unifier:
    """Group candidates transitively, optionally revalidate clusters, derive UnifiedMarkets."""

    def __init__(
        self,
        matcher: Matcher | None = None,
        *,
        cluster_policy: str = "transitive",
        revalidation_threshold: float = 0.75,
        max_cluster_platforms: int = 3,
        routing_min_liquidity: float = 1000.0,
    ) -> None:
        if cluster_policy not in ("transitive", "revalidate"):
            raise ValueError(f"unknown cluster policy: {cluster_policy!r}")
        self.matcher = matcher or Matcher()
        self.cluster_policy = cluster_policy
        self.revalidation_threshold = revalidation_threshold
        self.max_cluster_platforms = max_cluster_platforms
        self.routing_min_liquidity = routing_min_liquidity

    @classmethod
    def from_settings(cls, settings: Settings, matcher: Matcher | None = None) -> Unifier:
        return cls(
            matcher or Matcher.from_settings(settings),
            cluster_policy=settings.cluster_policy,
            revalidation_threshold=settings.revalidation_threshold,
            max_cluster_platforms=settings.max_cluster_platforms,
            routing_min_liquidity=settings.routing_min_liquidity,
        )

    # Clustering

    def cluster(
        self, candidates: list[MatchCandidate], listings: list[MarketListing]
    ) -> list[list[MarketListing]]:
        """Partition listings into clusters; every listing lands in exactly one."""
        by_key = {lst.key: lst for lst in listings}
        ds = _DisjointSet(by_key.values())
        edges = sorted(
            (c for c in candidates if c.qualifies),
            key=lambda c: (-c.confidence, c.listing_a.key, c.listing_b.key),
        )
        for c in edges:
            a, b = c.listing_a.key, c.listing_b.key
            if a in by_key and b in by_key:
                ds.union(a, b)

        groups: dict[Key, list[MarketListing]] = {}
        for key in sorted(by_key):
            groups.setdefault(ds.find(key), []).append(by_key[key])
        clusters = list(groups.values())
        if self.cluster_policy == "revalidate":
            clusters = [sub for cl in clusters for sub in self._revalidate(cl)]
        return clusters

    def _revalidate(self, cluster: list[MarketListing]) -> list[list[MarketListing]]:
        """Split a cluster so every pair inside each part scores >= the revalidation bound."""
        if len(cluster) <= 2:
            return [cluster]
        parts: list[list[MarketListing]] = []
        for lst in cluster:
            for part in parts:
                if all(
                    self.matcher.score(lst, other).confidence >= self.revalidation_threshold
                    for other in part
                ):
                    part.append(lst)
                    break
            else:
                parts.append([lst])
        if len(parts) > 1:
            log.info(
                "cluster_split",
                members=[f"{x.platform_id}:{x.external_id}" for x in cluster],
                parts=len(parts),
            )
        return parts

    # Derivation

    def unify(
        self,
        candidates: list[MatchCandidate],
        listings: list[MarketListing],
        stale_platforms: Collection[str] = (),
    ) -> list[UnifiedMarket]:
        """Build one UnifiedMarket per cluster, highest combined volume first."""
        stale = set(stale_platforms)
        edge_scores: dict[frozenset[Key], float] = {
            frozenset((c.listing_a.key, c.listing_b.key)): c.confidence
            for c in candidates
            if c.qualifies
        }
        markets = [
            self._build(cluster, edge_scores, stale)
            for cluster in self.cluster(candidates, listings)
        ]
        markets.sort(key=lambda m: (-m.combined_volume, m.unified_id))
        return markets

    def build_market(
        self,
        listings: list[MarketListing],
        stale_platforms: Collection[str] = (),
        match_confidence: float | None = None,
    ) -> UnifiedMarket:
        """Derive one UnifiedMarket from an already-decided cluster (e.g. a live refetch)."""
        market = self._build(sorted(listings, key=lambda lst: lst.key), {}, set(stale_platforms))
        if match_confidence is not None:
            market = market.model_copy(update={"match_confidence": match_confidence})
        return market

    def _confidence(self, cluster: list[MarketListing], edge_scores: dict[frozenset[Key], float]) -> float:
        if len(cluster) < 2:
            return 1.0
        scores = []
        for i, a in enumerate(cluster):
            for b in cluster[i + 1 :]:
                s = edge_scores.get(frozenset((a.key, b.key)))
                if s is not None:
                    scores.append(s)
        if not scores:
            # Revalidated parts may hold no directly scored edge
            scores = [self.matcher.score(a, b).confidence for i, a in enumerate(cluster) for b in cluster[i + 1 :]]
        return round(sum(scores) / len(scores), 4)

    def _build(
        self,
        cluster: list[MarketListing],
        edge_scores: dict[frozenset[Key], float],
        stale: set[str],
    ) -> UnifiedMarket:
        uid = unified_id_for(cluster)
        fresh = [lst for lst in cluster if lst.platform_id not in stale]
        needs_review = len(cluster) > self.max_cluster_platforms
        if needs_review:
            log.warning(
                "cluster_flagged",
                unified_id=uid,
                platforms=[lst.platform_id for lst in cluster],
                cap=self.max_cluster_platforms,
            )
        end_times = [lst.end_time for lst in cluster if lst.end_time is not None]
        return UnifiedMarket(
            unified_id=uid,
            canonical_question=max(cluster, key=lambda lst: len(lst.question)).question,
            category=_category(cluster),
            end_time=min(end_times) if end_times else None,
            platforms={lst.platform_id: lst for lst in cluster},
            best_price=best_price(fresh),
            best_liquidity_platform=_best_liquidity(fresh or cluster),
            combined_volume=round(sum(lst.volume_24h for lst in cluster), 6),
            liquidity_score=liquidity_score(cluster),
            match_confidence=self._confidence(cluster, edge_scores),
            criteria_mismatch=_criteria_mismatch(end_times),
            routing_recommendations=routing_recommendations(fresh, self.routing_min_liquidity),
            stale_platforms=sorted({lst.platform_id for lst in cluster} & stale),
            needs_review=needs_review,
        )


def _category(cluster: list[MarketListing]) -> str | None:
    for lst in cluster:
        if lst.category and lst.category.strip().lower() not in GENERIC_CATEGORIES:
            return lst.category
    return next((lst.category for lst in cluster if lst.category), None)


def _best_liquidity(listings: list[MarketListing]) -> str | None:
    if not listings:
        return None
    return min(listings, key=lambda lst: (-lst.liquidity, lst.platform_id)).platform_id


def _criteria_mismatch(end_times: list[int]) -> bool:
    if len(end_times) < 2:
        return False
    return (max(end_times) - min(end_times)) / _DAY_MS > CRITERIA_MISMATCH_DAYS


def best_price(listings: list[MarketListing]) -> BestPrice:
    """Cheapest entry price per side across the given (non-stale) listings."""

    def cheapest(side: str) -> PriceQuote:
        quotes = [(lst.entry_price(side), lst.platform_id) for lst in listings]
        priced = [(p, pid) for p, pid in quotes if p is not None]
        if not priced:
            return PriceQuote()
        price, pid = min(priced)
        return PriceQuote(platform=pid, price=price)

    return BestPrice(yes=cheapest("yes"), no=cheapest("no"))


def liquidity_score(listings: list[MarketListing]) -> int:
    """1-5 stars: 40% combined volume (capped at $1M), 60% tightness of the mean spread."""
    volume = sum(lst.volume_24h for lst in listings)
    spreads = [lst.spread for lst in listings if lst.spread]
    avg_spread = sum(spreads) / len(spreads) if spreads else 0.1
    volume_score = min(volume / 1_000_000, 1.0)
    spread_score = min(1 / (avg_spread * 10), 1.0)
    score = volume_score * 0.4 + spread_score * 0.6
    return max(1, min(5, int(score * 5 + 0.5)))


def _exit_price(listing: MarketListing, side: str) -> float | None:
    if side == "yes" and listing.orderbook is not None and listing.orderbook.best_bid is not None:
        return listing.orderbook.best_bid
    return listing.price_of(side)


def routing_recommendations(
    listings: list[MarketListing], min_liquidity: float
) -> dict[str, RoutingRecommendation]:
    """buy_* -> lowest price, sell_* -> highest, preferring platforms with enough liquidity."""
    out: dict[str, RoutingRecommendation] = {}
    for action in ("buy_yes", "buy_no", "sell_yes", "sell_no"):
        verb, side = action.split("_")
        buying = verb == "buy"
        quotes = []
        for lst in listings:
            price = lst.entry_price(side) if buying else _exit_price(lst, side)
            if price is not None:
                quotes.append((price, lst))
        if not quotes:
            continue
        liquid = [(p, lst) for p, lst in quotes if lst.liquidity >= min_liquidity]
        pool = liquid or quotes

        def rank(q: tuple[float, MarketListing]) -> tuple[float, float, str]:
            p, lst = q
            return (p if buying else -p, -lst.liquidity, lst.platform_id)

        price, lst = min(pool, key=rank)
        direction = "lowest" if buying else "highest"
        reason = f"{direction} {side.upper()} price with acceptable liquidity"
        if not liquid:
            reason = f"{direction} {side.upper()} price; liquidity below ${min_liquidity:,.0f} on every platform"
        out[action] = RoutingRecommendation(
            platform=lst.platform_id, reason=reason, price=price, liquidity=lst.liquidity
        )
    return out
