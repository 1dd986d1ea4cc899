"""
Text matching of trip place names against delivery terminals.

Location text is operator-entered and noisy, so the score only rewards
curated aliases: 100 for an exact or alias hit on a terminal, 80 for a
substring hit, otherwise 0. A RapidFuzz composite similarity is reported
alongside for explainability but never feeds the score.
"""

from dataclasses import dataclass, field
from typing import Optional, List

from rapidfuzz import fuzz
from rapidfuzz.distance import JaroWinkler

from .base import (
    BaseMatcher,
    FLAG_MISSING_TERMINAL_ALIAS,
    FLAG_TERMINAL_NOT_CLASSIFIED,
    FLAG_APPROXIMATE_TEXT,
)
from ..normalizer import normalize_location, is_substring_match

SCORE_EXACT = 100.0
SCORE_SUBSTRING = 80.0
SCORE_NONE = 0.0

METHOD_EXACT = "exact"
METHOD_ALIAS = "alias"
METHOD_SUBSTRING = "substring"
METHOD_NONE = "none"


@dataclass
class TextMatch:
    score: float
    method: str
    endpoint: Optional[str] = None
    flags: List[str] = field(default_factory=list)
    canonical_terminal: Optional[str] = None
    name_similarity: float = 0.0


def _composite_score(source: str, target: str) -> float:
    """
    Composite similarity using multiple RapidFuzz algorithms.

    Weights:
      0.35 x Jaro-Winkler
      0.35 x token_set_ratio
      0.30 x fuzz.ratio

    Returns float 0.0-1.0.
    """
    jw = JaroWinkler.similarity(source, target)
    tsr = fuzz.token_set_ratio(source, target) / 100.0
    ratio = fuzz.ratio(source, target) / 100.0
    return 0.35 * jw + 0.35 * tsr + 0.30 * ratio


class TextMatcher(BaseMatcher):
    """Scores trip start/end names against the delivery's terminal."""

    signal = "text"

    def match(self, trip_start: Optional[str], trip_end: Optional[str],
              delivery_terminal: Optional[str],
              delivery_customer: Optional[str] = None) -> TextMatch:
        endpoints = [("start", trip_start), ("end", trip_end)]
        similarity = self._name_similarity(
            [trip_start, trip_end], [delivery_terminal, delivery_customer])

        entry = self.aliases.resolve(delivery_terminal) if self.aliases else None
        if entry is None:
            return TextMatch(SCORE_NONE, METHOD_NONE,
                             flags=[FLAG_MISSING_TERMINAL_ALIAS],
                             name_similarity=similarity)
        if not entry.is_terminal:
            return TextMatch(SCORE_NONE, METHOD_NONE,
                             flags=[FLAG_TERMINAL_NOT_CLASSIFIED],
                             canonical_terminal=entry.name,
                             name_similarity=similarity)

        terminal_names = {normalize_location(entry.name), normalize_location(delivery_terminal)}
        terminal_names.discard("")

        # Rule 1: exact name or curated alias on either endpoint
        for endpoint, name in endpoints:
            key = normalize_location(name)
            if not key:
                continue
            if key in terminal_names:
                return TextMatch(SCORE_EXACT, METHOD_EXACT, endpoint=endpoint,
                                 canonical_terminal=entry.name,
                                 name_similarity=similarity)
            if self.aliases.matches(name, entry):
                return TextMatch(SCORE_EXACT, METHOD_ALIAS, endpoint=endpoint,
                                 canonical_terminal=entry.name,
                                 name_similarity=similarity)

        # Rule 2: substring containment either way
        min_length = self.config.min_substring_length
        for endpoint, name in endpoints:
            if any(is_substring_match(name, t, min_length) for t in terminal_names):
                return TextMatch(SCORE_SUBSTRING, METHOD_SUBSTRING, endpoint=endpoint,
                                 flags=[FLAG_APPROXIMATE_TEXT],
                                 canonical_terminal=entry.name,
                                 name_similarity=similarity)

        return TextMatch(SCORE_NONE, METHOD_NONE, canonical_terminal=entry.name,
                         name_similarity=similarity)

    @staticmethod
    def _name_similarity(trip_names: List[Optional[str]],
                         delivery_names: List[Optional[str]]) -> float:
        """Best composite similarity (0-100) between any trip and delivery name."""
        best = 0.0
        for trip_name in trip_names:
            source = normalize_location(trip_name)
            if not source:
                continue
            for delivery_name in delivery_names:
                target = normalize_location(delivery_name)
                if not target:
                    continue
                best = max(best, _composite_score(source, target))
        return round(best * 100.0, 1)
