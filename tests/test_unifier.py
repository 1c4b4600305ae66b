"""Unifier: clustering, coverage, derived pricing and routing."""

from predfusion.aggregation.unifier import Unifier, liquidity_score, unified_id_for
from predfusion.matching import Matcher
from predfusion.models import MatchCandidate, MatchStrength

TRUMP = "Will Donald Trump win the 2024 election?"
RAIN = "Will it rain in London tomorrow?"


def edge(a, b, confidence=0.9, strength=MatchStrength.CANDIDATE):
    if b.key < a.key:
        a, b = b, a
    return MatchCandidate(listing_a=a, listing_b=b, confidence=confidence, strength=strength)


def _members(markets):
    return sorted(key for m in markets for key in ((p, lst.external_id) for p, lst in m.platforms.items()))


def test_every_listing_in_exactly_one_market(make_listing):
    a = make_listing("polymarket", "a")
    b = make_listing("kalshi", "b")
    c = make_listing("limitless", "c", RAIN)
    d = make_listing("polymarket", "d", RAIN)
    markets = Unifier().unify([edge(a, b)], [a, b, c, d])
    assert _members(markets) == sorted([lst.key for lst in (a, b, c, d)])
    sizes = sorted(len(m.platforms) for m in markets)
    assert sizes == [1, 1, 2]


def test_transitive_edges_merge_chain(make_listing):
    a = make_listing("polymarket", "a")
    b = make_listing("kalshi", "b")
    c = make_listing("limitless", "c")
    markets = Unifier().unify([edge(a, b, 0.95), edge(b, c, 0.88)], [a, b, c])
    assert len(markets) == 1
    assert set(markets[0].platforms) == {"polymarket", "kalshi", "limitless"}
    assert markets[0].match_confidence == round((0.95 + 0.88) / 2, 4)


def test_union_refused_when_platform_already_in_cluster(make_listing):
    a = make_listing("polymarket", "a")
    b = make_listing("kalshi", "b")
    c = make_listing("polymarket", "c")
    markets = Unifier().unify([edge(a, b, 0.95), edge(b, c, 0.9)], [a, b, c])
    assert len(markets) == 2
    merged = next(m for m in markets if len(m.platforms) == 2)
    assert merged.platforms["polymarket"].external_id == "a"


def test_ambiguous_candidates_never_merge(make_listing):
    a = make_listing("polymarket", "a")
    b = make_listing("kalshi", "b")
    markets = Unifier().unify([edge(a, b, 0.84, MatchStrength.AMBIGUOUS)], [a, b])
    assert len(markets) == 2


def test_revalidate_policy_splits_drifted_cluster(make_listing):
    a = make_listing("polymarket", "a", TRUMP)
    b = make_listing("kalshi", "b", TRUMP)
    c = make_listing("limitless", "c", RAIN)
    edges = [edge(a, b, 0.99), edge(b, c, 0.86)]
    assert len(Unifier(Matcher(), cluster_policy="transitive").unify(edges, [a, b, c])) == 1

    split = Unifier(Matcher(), cluster_policy="revalidate", revalidation_threshold=0.75).unify(edges, [a, b, c])
    assert sorted(len(m.platforms) for m in split) == [1, 2]
    pair = next(m for m in split if len(m.platforms) == 2)
    assert set(pair.platforms) == {"polymarket", "kalshi"}


def test_oversized_cluster_flagged_for_review(make_listing):
    a = make_listing("polymarket", "a")
    b = make_listing("kalshi", "b")
    c = make_listing("limitless", "c")
    [m] = Unifier(max_cluster_platforms=2).unify([edge(a, b), edge(b, c)], [a, b, c])
    assert m.needs_review


def test_unified_id_stable_regardless_of_order(make_listing):
    a = make_listing("polymarket", "a")
    b = make_listing("kalshi", "b")
    assert unified_id_for([a, b]) == unified_id_for([b, a])
    assert unified_id_for([a, b]).startswith("unified-")
    assert unified_id_for([a]) != unified_id_for([a, b])


def test_derived_fields(make_listing):
    a = make_listing("polymarket", "a", TRUMP, 0.52, 0.48, volume=50_000, liquidity=20_000, end_time=1_000)
    b = make_listing(
        "kalshi", "b", "Will Trump win?", 0.48, 0.53, volume=30_000, liquidity=10_000, end_time=1_000 + 8 * 86_400_000
    )
    [m] = Unifier().unify([edge(a, b)], [a, b])
    assert m.canonical_question == TRUMP
    assert m.best_price.yes.platform == "kalshi" and m.best_price.yes.price == 0.48
    assert m.best_price.no.platform == "polymarket" and m.best_price.no.price == 0.48
    assert m.best_liquidity_platform == "polymarket"
    assert m.combined_volume == 80_000
    assert m.end_time == 1_000
    assert m.criteria_mismatch


def test_stale_platform_excluded_from_best_price_but_shown(make_listing):
    a = make_listing("polymarket", "a", yes=0.52)
    b = make_listing("kalshi", "b", yes=0.48)
    [m] = Unifier().unify([edge(a, b)], [a, b], stale_platforms={"kalshi"})
    assert set(m.platforms) == {"polymarket", "kalshi"}
    assert m.best_price.yes.platform == "polymarket"
    assert m.stale_platforms == ["kalshi"]
    assert m.routing_recommendations["buy_yes"].platform == "polymarket"


def test_generic_category_skipped(make_listing):
    a = make_listing("kalshi", "a", category="Other")
    b = make_listing("polymarket", "b", category=None)
    c = make_listing("limitless", "c", category="Crypto")
    [m] = Unifier().unify([edge(a, b), edge(a, c)], [a, b, c])
    assert m.category == "Crypto"


def test_routing_prefers_liquid_platforms(make_listing):
    a = make_listing("polymarket", "a", yes=0.52, no=0.49, liquidity=20_000)
    b = make_listing("kalshi", "b", yes=0.48, no=0.53, liquidity=500)
    [m] = Unifier(routing_min_liquidity=1000).unify([edge(a, b)], [a, b])
    r = m.routing_recommendations
    assert r["buy_yes"].platform == "polymarket"
    assert r["buy_yes"].reason == "lowest YES price with acceptable liquidity"
    assert r["sell_yes"].platform == "polymarket"

    [m] = Unifier(routing_min_liquidity=100).unify([edge(a, b)], [a, b])
    assert m.routing_recommendations["buy_yes"].platform == "kalshi"
    assert m.routing_recommendations["buy_no"].platform == "polymarket"
    assert m.routing_recommendations["sell_yes"].platform == "polymarket"

    [m] = Unifier(routing_min_liquidity=1_000_000).unify([edge(a, b)], [a, b])
    assert m.routing_recommendations["buy_yes"].platform == "kalshi"
    assert "below" in m.routing_recommendations["buy_yes"].reason


def test_liquidity_score_bounds(make_listing):
    deep = [make_listing("polymarket", "a", volume=1_000_000, spread=0.01)]
    thin = [make_listing("polymarket", "a", volume=0, spread=0.5)]
    assert liquidity_score(deep) == 5
    assert liquidity_score(thin) == 1


def test_output_sorted_by_combined_volume(make_listing):
    a = make_listing("polymarket", "a", volume=10)
    b = make_listing("kalshi", "b", RAIN, volume=500)
    markets = Unifier().unify([], [a, b])
    assert [m.combined_volume for m in markets] == [500, 10]
