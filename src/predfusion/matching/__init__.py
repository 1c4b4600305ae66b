"""Cross-platform listing matcher."""

from predfusion.matching.entities import Entities, extract_entities, normalize_text
from predfusion.matching.matcher import Matcher

__all__ = ["Entities", "Matcher", "extract_entities", "normalize_text"]
