"""Question text normalization and entity extraction (names, dates, event keywords)."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

STOPWORDS = frozenset({"will", "the", "a", "an", "be", "to", "of", "in", "on", "at", "for", "by"})

EVENT_KEYWORDS = (
    "election", "championship", "award", "price", "rate", "win", "lose", "reach",
    "exceed", "below", "above", "pass", "fail", "approve", "reject", "launch",
    "release", "announce", "resign", "appoint", "nominate", "vote", "trade",
    "close", "open", "hit", "break", "record", "defeat", "beat",
)  # fmt: skip

_MONTHS = (
    "January|February|March|April|May|June|July|August|September|October|November|December"
)
# Capitalized words that start a question or are calendar tokens, not names.
_NOT_NAMES = frozenset(
    {"will", "is", "does", "do", "did", "can", "could", "would", "should", "has", "have",
     "are", "was", "were", "who", "what", "which", "when", "how", "the", "by", "before", "after"}
    | {m.lower() for m in _MONTHS.split("|")}
)  # fmt: skip

_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")
_CAP_RUN_RE = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b")
_YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")
_FULL_DATE_RE = re.compile(rf"\b(?:{_MONTHS})\s+\d{{1,2}},?\s+(?:19|20)\d{{2}}\b", re.IGNORECASE)
_MONTH_YEAR_RE = re.compile(rf"\b(?:{_MONTHS})\s+(?:19|20)\d{{2}}\b", re.IGNORECASE)
# Keyword plus a short inflection (wins, winner, closed, prices)
_KEYWORD_RE = re.compile(r"\b(" + "|".join(EVENT_KEYWORDS) + r")\w{0,3}\b", re.IGNORECASE)


@dataclass(frozen=True)
class Entities:
    names: list[str] = field(default_factory=list)
    dates: list[str] = field(default_factory=list)
    event_keywords: list[str] = field(default_factory=list)


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace, drop stopwords."""
    if not text:
        return ""
    s = _SPACE_RE.sub(" ", _PUNCT_RE.sub(" ", text.lower())).strip()
    return " ".join(w for w in s.split(" ") if w and w not in STOPWORDS)


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for item in items:
        k = item.lower()
        if k not in seen:
            seen.add(k)
            out.append(item)
    return out


def _names(question: str) -> list[str]:
    names = []
    for run in _CAP_RUN_RE.findall(question):
        words = [w for w in run.split() if w.lower() not in _NOT_NAMES]
        if words:
            names.append(" ".join(words))
    return _dedupe(names)


def extract_entities(question: str) -> Entities:
    if not question:
        return Entities()
    dates = (
        _YEAR_RE.findall(question)
        + _FULL_DATE_RE.findall(question)
        + _MONTH_YEAR_RE.findall(question)
    )
    found = {m.lower() for m in _KEYWORD_RE.findall(question)}
    return Entities(
        names=_names(question),
        dates=_dedupe(dates),
        event_keywords=[k for k in EVENT_KEYWORDS if k in found],
    )


def overlap(a: list[str], b: list[str]) -> float:
    """Share of items with an exact or substring counterpart, over the larger list."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    lb = [s.lower() for s in b]
    matches = 0
    for x in (s.lower() for s in a):
        if any(x == y or x in y or y in x for y in lb):
            matches += 1
    return matches / max(len(a), len(b))


def entity_score(e1: Entities, e2: Entities) -> float:
    """Weighted overlap (names 0.4, dates 0.4, events 0.2) over the kinds either side mentions."""
    total = 0.0
    weights = 0.0
    for a, b, w in (
        (e1.names, e2.names, 0.4),
        (e1.dates, e2.dates, 0.4),
        (e1.event_keywords, e2.event_keywords, 0.2),
    ):
        if a or b:
            total += overlap(a, b) * w
            weights += w
    return total / weights if weights > 0 else 0.0


def shared_entities(e1: Entities, e2: Entities) -> tuple[list[str], list[str], list[str]]:
    def common(a: list[str], b: list[str]) -> list[str]:
        lb = {s.lower() for s in b}
        return [s for s in a if s.lower() in lb]

    return (
        common(e1.names, e2.names),
        common(e1.dates, e2.dates),
        common(e1.event_keywords, e2.event_keywords),
    )
