"""Pairwise cross-platform match scoring: text, entity and temporal similarity."""

from __future__ import annotations

from dataclasses import dataclass
from itertools import combinations

import numpy as np
import structlog
from rapidfuzz import fuzz, process

from predfusion.config.settings import Settings
from predfusion.matching.entities import (
    Entities,
    entity_score,
    extract_entities,
    normalize_text,
    shared_entities,
)
from predfusion.models import MarketListing, MatchCandidate, MatchedEntities, MatchStrength

log = structlog.get_logger(__name__)

_DAY_MS = 24 * 60 * 60 * 1000


def text_similarity(a: str, b: str) -> float:
    """Mean of character-level and token-set similarity on normalized text, in [0, 1]."""
    return _normalized_similarity(normalize_text(a), normalize_text(b))


def _normalized_similarity(na: str, nb: str) -> float:
    if not na and not nb:
        return 1.0
    if not na or not nb:
        return 0.0
    return (fuzz.ratio(na, nb) + fuzz.token_set_ratio(na, nb)) / 200.0


def temporal_similarity(t1: int | None, t2: int | None, tolerance_days: float = 30) -> float:
    """1.0 same instant, 0.9 within a day, 0.7 within a week, 0.5 within tolerance, else 0."""
    if t1 is None and t2 is None:
        return 1.0
    if t1 is None or t2 is None:
        return 0.5
    days = abs(t1 - t2) / _DAY_MS
    if days == 0:
        return 1.0
    if days <= 1:
        return 0.9
    if days <= 7:
        return 0.7
    if days <= tolerance_days:
        return 0.5
    return 0.0


@dataclass(frozen=True)
class _Features:
    text: str
    entities: Entities


class Matcher:
    """Scores listing pairs from different platforms and keeps those at or near the threshold."""

    def __init__(
        self,
        similar_threshold: float = 0.85,
        identical_threshold: float = 0.95,
        ambiguity_margin: float = 0.02,
        weights: tuple[float, float, float] = (0.5, 0.3, 0.2),
        date_tolerance_days: float = 30,
    ) -> None:
        self.similar_threshold = similar_threshold
        self.identical_threshold = identical_threshold
        self.ambiguity_margin = ambiguity_margin
        self.weights = weights
        self.date_tolerance_days = date_tolerance_days

    @classmethod
    def from_settings(cls, settings: Settings) -> Matcher:
        return cls(
            similar_threshold=settings.similar_threshold,
            identical_threshold=settings.identical_threshold,
            ambiguity_margin=settings.ambiguity_margin,
            weights=settings.match_weights,
            date_tolerance_days=settings.date_tolerance_days,
        )

    def _strength(self, confidence: float) -> MatchStrength | None:
        if confidence >= self.identical_threshold:
            return MatchStrength.STRONG
        if confidence >= self.similar_threshold:
            return MatchStrength.CANDIDATE
        if confidence >= self.similar_threshold - self.ambiguity_margin:
            return MatchStrength.AMBIGUOUS
        return None

    def _confidence(
        self, a: MarketListing, b: MarketListing, fa: _Features, fb: _Features
    ) -> tuple[float, float, float, float]:
        """(confidence, text, entity, temporal) for a pair already in canonical order."""
        text = _normalized_similarity(fa.text, fb.text)
        ent = entity_score(fa.entities, fb.entities)
        temporal = temporal_similarity(a.end_time, b.end_time, self.date_tolerance_days)
        wt, we, wd = self.weights
        confidence = min(1.0, max(0.0, round(wt * text + we * ent + wd * temporal, 6)))
        return confidence, text, ent, temporal

    def _score(
        self, a: MarketListing, b: MarketListing, fa: _Features, fb: _Features
    ) -> MatchCandidate | None:
        """Candidate for a pair at or above the audit band, else None. Cheap floats first."""
        # Canonical order makes score(a, b) == score(b, a)
        if b.key < a.key:
            a, b, fa, fb = b, a, fb, fa
        confidence, text, ent, temporal = self._confidence(a, b, fa, fb)
        strength = self._strength(confidence)
        if strength is None:
            return None
        return self._candidate(a, b, fa, fb, confidence, text, ent, temporal, strength)

    def _candidate(
        self,
        a: MarketListing,
        b: MarketListing,
        fa: _Features,
        fb: _Features,
        confidence: float,
        text: float,
        ent: float,
        temporal: float,
        strength: MatchStrength,
    ) -> MatchCandidate:
        names, dates, keywords = shared_entities(fa.entities, fb.entities)
        return MatchCandidate(
            listing_a=a,
            listing_b=b,
            confidence=confidence,
            text_score=round(text, 6),
            entity_score=round(ent, 6),
            temporal_score=temporal,
            strength=strength,
            ambiguous=abs(confidence - self.similar_threshold) <= self.ambiguity_margin,
            matched_entities=MatchedEntities(names=names, dates=dates, event_keywords=keywords),
        )

    def _text_floor(self) -> float | None:
        """Lowest text similarity that can still reach the audit band, or None when text cannot prune."""
        wt, we, wd = self.weights
        if wt <= 0:
            return None
        floor = (self.similar_threshold - self.ambiguity_margin - we - wd) / wt
        # Slack for float32 scores and rounding of the confidence
        floor -= 1e-3
        return floor if floor > 0 else None

    def _text_pairs(self, fas: list[_Features], fbs: list[_Features]) -> list[tuple[int, int]]:
        """Index pairs whose text similarity could reach the audit band.

        Text scores for the whole block come from rapidfuzz cdist; exact scores are
        recomputed per surviving pair.
        """
        floor = self._text_floor()
        if floor is None:
            return [(i, j) for i in range(len(fas)) for j in range(len(fbs))]
        ta = [f.text for f in fas]
        tb = [f.text for f in fbs]
        sim = (
            process.cdist(ta, tb, scorer=fuzz.ratio, workers=-1)
            + process.cdist(ta, tb, scorer=fuzz.token_set_ratio, workers=-1)
        ) / 200.0
        keep = sim >= floor
        # Empty text scores by its own rule in _normalized_similarity
        keep[[i for i, t in enumerate(ta) if not t], :] = True
        keep[:, [j for j, t in enumerate(tb) if not t]] = True
        rows, cols = np.nonzero(keep)
        return list(zip(rows.tolist(), cols.tolist()))

    @staticmethod
    def _features(listing: MarketListing) -> _Features:
        return _Features(normalize_text(listing.question), extract_entities(listing.question))

    def score(self, a: MarketListing, b: MarketListing) -> MatchCandidate:
        """Score any two listings; no threshold or platform filtering.

        A pair below the audit band still comes back, labeled AMBIGUOUS; match() drops those.
        """
        if b.key < a.key:
            a, b = b, a
        fa, fb = self._features(a), self._features(b)
        confidence, text, ent, temporal = self._confidence(a, b, fa, fb)
        strength = self._strength(confidence) or MatchStrength.AMBIGUOUS
        return self._candidate(a, b, fa, fb, confidence, text, ent, temporal, strength)

    @staticmethod
    def comparable(a: MarketListing, b: MarketListing) -> bool:
        """Different platforms, and same or unset category."""
        if a.platform_id == b.platform_id:
            return False
        if a.category and b.category:
            return a.category.strip().lower() == b.category.strip().lower()
        return True

    def match(self, listings_by_platform: dict[str, list[MarketListing]]) -> list[MatchCandidate]:
        """All cross-platform pairs scoring at or above the audit band, strongest first.

        Pairs in the band just below the similar threshold come back as AMBIGUOUS
        candidates (logged, never merged) so they can be audited.
        """
        features: dict[tuple[str, str], _Features] = {}
        for listings in listings_by_platform.values():
            for listing in listings:
                features[listing.key] = self._features(listing)

        out: list[MatchCandidate] = []
        pairs = 0
        for pa, pb in combinations(sorted(listings_by_platform), 2):
            la, lb = listings_by_platform[pa], listings_by_platform[pb]
            if not la or not lb:
                continue
            for i, j in self._text_pairs([features[a.key] for a in la], [features[b.key] for b in lb]):
                a, b = la[i], lb[j]
                if not self.comparable(a, b):
                    continue
                pairs += 1
                c = self._score(a, b, features[a.key], features[b.key])
                if c is None:
                    continue
                if c.strength is MatchStrength.AMBIGUOUS:
                    log.info(
                        "match_ambiguous",
                        a=f"{c.listing_a.platform_id}:{c.listing_a.external_id}",
                        b=f"{c.listing_b.platform_id}:{c.listing_b.external_id}",
                        confidence=c.confidence,
                    )
                out.append(c)
        log.debug("match_scored", listings=len(features), pairs_scored=pairs, candidates=len(out))
        out.sort(key=lambda c: (-c.confidence, c.listing_a.key, c.listing_b.key))
        return out
