"""Matcher: entity extraction, composite scoring, thresholds, symmetry."""

from predfusion.matching import Matcher, extract_entities, normalize_text
from predfusion.matching.entities import entity_score, overlap
from predfusion.matching.matcher import temporal_similarity
from predfusion.models import MatchStrength

DAY = 24 * 60 * 60 * 1000


def test_normalize_text_drops_punctuation_and_stopwords():
    assert normalize_text("Will the Fed cut rates by March?") == "fed cut rates march"


def test_extract_entities_names_dates_keywords():
    e = extract_entities("Will Donald Trump win the 2024 election?")
    assert e.names == ["Donald Trump"]
    assert e.dates == ["2024"]
    assert e.event_keywords == ["election", "win"]

    e = extract_entities("Will the Fed cut rates by March 19, 2025?")
    assert e.names == ["Fed"]
    assert e.dates == ["2025", "March 19, 2025"]
    assert e.event_keywords == ["rate"]


def test_overlap_counts_substring_matches_over_larger_list():
    assert overlap(["win"], ["election", "win"]) == 0.5
    assert overlap(["Trump"], ["Donald Trump"]) == 1.0
    assert overlap([], []) == 1.0
    assert overlap(["x"], []) == 0.0


def test_entity_score_ignores_kinds_neither_side_mentions():
    a = extract_entities("Will Bitcoin reach 100k?")
    b = extract_entities("Bitcoin to reach 100k?")
    assert entity_score(a, b) == 1.0


def test_temporal_similarity_bands():
    assert temporal_similarity(None, None) == 1.0
    assert temporal_similarity(0, None) == 0.5
    assert temporal_similarity(0, 0) == 1.0
    assert temporal_similarity(0, DAY // 2) == 0.9
    assert temporal_similarity(0, 3 * DAY) == 0.7
    assert temporal_similarity(0, 20 * DAY) == 0.5
    assert temporal_similarity(0, 45 * DAY) == 0.0


def test_rephrased_question_is_candidate_match(make_listing):
    a = make_listing("polymarket", "pm-1", "Will Donald Trump win the 2024 election?")
    b = make_listing("kalshi", "PRES-24", "Will Donald Trump win in 2024?")
    c = Matcher().score(a, b)
    assert 0.9 < c.confidence < 0.95
    assert c.strength is MatchStrength.CANDIDATE
    assert c.matched_entities.names == ["Donald Trump"]
    assert c.matched_entities.dates == ["2024"]
    assert c.matched_entities.event_keywords == ["win"]


def test_identical_question_is_strong(make_listing):
    a = make_listing("polymarket", "pm-1")
    b = make_listing("kalshi", "k-1")
    c = Matcher().score(a, b)
    assert c.confidence == 1.0
    assert c.strength is MatchStrength.STRONG


def test_score_is_symmetric(make_listing):
    m = Matcher()
    pairs = [
        ("Will Donald Trump win the 2024 election?", "Will Donald Trump win in 2024?"),
        ("Bitcoin above $100k by December 2025?", "Will BTC close above 100000 in December 2025?"),
        ("Will the Chiefs win the Super Bowl?", "Super Bowl champion: Kansas City Chiefs"),
    ]
    for qa, qb in pairs:
        a = make_listing("polymarket", "a", qa, end_time=0)
        b = make_listing("kalshi", "b", qb, end_time=5 * DAY)
        assert m.score(a, b).confidence == m.score(b, a).confidence


def test_different_people_do_not_match(make_listing):
    a = make_listing("polymarket", "pm-1", "Will Donald Trump win the 2024 election?")
    b = make_listing("kalshi", "k-1", "Will Joe Biden win the 2024 election?")
    assert Matcher().match({"polymarket": [a], "kalshi": [b]}) == []


def test_same_platform_never_matched(make_listing):
    a = make_listing("polymarket", "pm-1")
    b = make_listing("polymarket", "pm-2")
    assert Matcher().match({"polymarket": [a, b]}) == []
    assert not Matcher.comparable(a, b)


def test_category_must_agree_or_be_unset(make_listing):
    a = make_listing("polymarket", "pm-1", category="Politics")
    b = make_listing("kalshi", "k-1", category="Sports")
    c = make_listing("limitless", "l-1", category=None)
    found = Matcher().match({"polymarket": [a], "kalshi": [b], "limitless": [c]})
    pairs = {(x.listing_a.platform_id, x.listing_b.platform_id) for x in found}
    assert pairs == {("kalshi", "limitless"), ("limitless", "polymarket")}


def test_match_orders_pairs_canonically(make_listing):
    a = make_listing("polymarket", "pm-1")
    b = make_listing("kalshi", "k-1")
    [c] = Matcher().match({"polymarket": [a], "kalshi": [b]})
    assert c.listing_a.platform_id == "kalshi"
    assert c.listing_b.platform_id == "polymarket"


def test_near_threshold_pair_kept_as_ambiguous(make_listing):
    a = make_listing("polymarket", "pm-1", "Will Donald Trump win the 2024 election?")
    b = make_listing("kalshi", "PRES-24", "Will Donald Trump win in 2024?")
    score = Matcher().score(a, b).confidence
    m = Matcher(similar_threshold=score + 0.01, identical_threshold=0.99, ambiguity_margin=0.02)
    [c] = m.match({"polymarket": [a], "kalshi": [b]})
    assert c.strength is MatchStrength.AMBIGUOUS
    assert c.ambiguous
    assert not c.qualifies


def test_pair_below_band_discarded(make_listing):
    a = make_listing("polymarket", "pm-1", "Will Donald Trump win the 2024 election?")
    b = make_listing("kalshi", "PRES-24", "Will Donald Trump win in 2024?")
    score = Matcher().score(a, b).confidence
    m = Matcher(similar_threshold=score + 0.05, identical_threshold=0.99, ambiguity_margin=0.02)
    assert m.match({"polymarket": [a], "kalshi": [b]}) == []


_PEOPLE = ["Donald Trump", "Joe Biden", "Kamala Harris", "Ron DeSantis", "Gavin Newsom"]
_EVENTS = [
    "win the {year} election",
    "win the {year} Republican primary",
    "be nominated in {year}",
    "resign before {year}",
]


def _variety(make_listing, platform_id, phrasing):
    out = []
    for i, person in enumerate(_PEOPLE):
        for j, event in enumerate(_EVENTS):
            for year in (2024, 2028):
                q = phrasing.format(person=person, event=event.format(year=year))
                out.append(make_listing(platform_id, f"{platform_id}-{i}-{j}-{year}", q, end_time=None))
    # Stopwords only: normalizes to empty text
    out.append(make_listing(platform_id, f"{platform_id}-empty", "Will the?", end_time=None))
    return out


def _all_pairs(m, by_platform):
    found = set()
    platforms = sorted(by_platform)
    for x, pa in enumerate(platforms):
        for pb in platforms[x + 1 :]:
            for a in by_platform[pa]:
                for b in by_platform[pb]:
                    if not m.comparable(a, b):
                        continue
                    c = m.score(a, b)
                    if m._strength(c.confidence) is not None:
                        found.add((c.listing_a.key, c.listing_b.key, c.confidence, c.strength))
    return found


def test_match_finds_same_pairs_as_scoring_every_pair(make_listing):
    by_platform = {
        "polymarket": _variety(make_listing, "polymarket", "Will {person} {event}?"),
        "kalshi": _variety(make_listing, "kalshi", "{person} to {event}"),
    }
    for m in (Matcher(), Matcher(similar_threshold=0.7, weights=(0.8, 0.1, 0.1)), Matcher(weights=(0.0, 0.6, 0.4))):
        got = {(c.listing_a.key, c.listing_b.key, c.confidence, c.strength) for c in m.match(by_platform)}
        assert got == _all_pairs(m, by_platform)
        assert got


def test_empty_normalized_questions_still_pair(make_listing):
    a = make_listing("polymarket", "pm-x", "Will the?", end_time=None)
    b = make_listing("kalshi", "k-x", "The?", end_time=None)
    # text 1.0, no entities, both end times unset: 0.5 + 0.0 + 0.2
    m = Matcher(similar_threshold=0.7, identical_threshold=0.9)
    [c] = m.match({"polymarket": [a], "kalshi": [b]})
    assert c.text_score == 1.0
    assert c.confidence == 0.7
