"""
Confidence Aggregation

Combines text, geospatial and temporal sub-scores into one overall
confidence, derives the quality label and decides whether a correlation
needs manual review. Optional bonus scorers (e.g. the preferred-partner
bonus) are composed in on top of the weighted sum.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Iterable, Sequence, Tuple, Protocol

from .aliases import LocationAliasTable
from .config import CorrelationConfig, LABEL_POOR
from .matchers.text import TextMatch
from .matchers.geo import GeoMatch
from .matchers.temporal import TemporalMatch
from .models import Trip, Delivery
from .normalizer import normalize_location

FLAG_LOW_CONFIDENCE = "low_confidence"


def quality_label(confidence: float,
                  thresholds: Sequence[Tuple[float, str]],
                  lowest: str = LABEL_POOR) -> str:
    """
    Map a confidence (0-100) to its quality label.

    thresholds are (minimum, label) pairs, best first. Every value maps
    to exactly one label and a higher confidence never gets a worse label.
    """
    for minimum, label in thresholds:
        if confidence >= minimum:
            return label
    return lowest


class BonusScorer(Protocol):
    """Extra points added on top of the weighted sum."""

    name: str

    def score(self, trip: Trip, delivery: Delivery) -> float:
        ...


class PreferredPartnerBonus:
    """
    Adds a fixed number of points when the delivery customer's parent
    organization is one of the preferred partners.
    """

    name = "preferred_partner"

    def __init__(self, partners: Iterable[str], points: float,
                 aliases: Optional[LocationAliasTable] = None):
        self.partners = {normalize_location(p) for p in partners if p}
        self.points = points
        self.aliases = aliases

    def score(self, trip: Trip, delivery: Delivery) -> float:
        if not self.partners or self.aliases is None:
            return 0.0
        entry = self.aliases.resolve(delivery.customer)
        if entry is None or not entry.parent_company:
            return 0.0
        if normalize_location(entry.parent_company) in self.partners:
            return self.points
        return 0.0


@dataclass
class Aggregate:
    overall: float
    label: str
    requires_review: bool
    flags: List[str] = field(default_factory=list)
    breakdown: Dict[str, Any] = field(default_factory=dict)
    match_methods: List[str] = field(default_factory=list)


class ConfidenceAggregator:
    """Weighted combination of the three signals."""

    def __init__(self, config: CorrelationConfig,
                 bonus_scorers: Optional[List[BonusScorer]] = None):
        self.config = config
        self.bonus_scorers = list(bonus_scorers or [])

    def bonus_points(self, trip: Trip, delivery: Delivery) -> List[Tuple[str, float]]:
        """Run every bonus scorer, keeping the ones that award points."""
        points = []
        for scorer in self.bonus_scorers:
            value = scorer.score(trip, delivery)
            if value:
                points.append((scorer.name, float(value)))
        return points

    def effective_weights(self, geo: GeoMatch) -> Dict[str, float]:
        """
        Weights used for one pairing. When geospatial evidence is missing
        its weight moves proportionally onto text and temporal.
        """
        weights = dict(self.config.weights)
        if not (geo.missing and self.config.redistribute_missing_geo and weights["geo"] > 0):
            return weights
        remaining = weights["text"] + weights["temporal"]
        if remaining <= 0:
            return weights
        geo_weight = weights["geo"]
        weights["text"] += geo_weight * weights["text"] / remaining
        weights["temporal"] += geo_weight * weights["temporal"] / remaining
        weights["geo"] = 0.0
        return weights

    def aggregate(self, text: TextMatch, geo: GeoMatch, temporal: TemporalMatch,
                  bonus: Iterable[Tuple[str, float]] = (),
                  min_confidence: Optional[float] = None) -> Aggregate:
        """
        Combine sub-scores into an Aggregate.

        min_confidence is the run's persistence floor; anything under it or
        under the review floor, or in the lowest label, needs review.
        """
        weights = self.effective_weights(geo)
        bonus = list(bonus)

        weighted = (
            weights["text"] * text.score
            + weights["geo"] * geo.score
            + weights["temporal"] * temporal.score
        )
        overall = weighted + sum(points for _, points in bonus)
        overall = round(min(100.0, max(0.0, overall)), 2)

        label = quality_label(overall, self.config.label_thresholds, self.config.lowest_label)
        floor = self.config.min_confidence if min_confidence is None else min_confidence
        requires_review = (
            overall < self.config.review_confidence
            or overall < floor
            or label == self.config.lowest_label
        )

        flags = []
        for flag in text.flags + geo.flags + temporal.flags:
            if flag not in flags:
                flags.append(flag)
        if overall < self.config.review_confidence:
            flags.append(FLAG_LOW_CONFIDENCE)

        methods = []
        if text.score > 0:
            methods.append(f"text_{text.method}")
        if geo.score > 0:
            methods.append("geo_proximity")
        methods.append("temporal_same_day" if temporal.day_difference == 0 else "temporal_window")
        methods.extend(f"bonus_{name}" for name, _ in bonus)

        breakdown = {
            "text": {
                "score": text.score,
                "method": text.method,
                "endpoint": text.endpoint,
                "canonical_terminal": text.canonical_terminal,
                "name_similarity": text.name_similarity,
                "weight": round(weights["text"], 4),
            },
            "geo": {
                "score": round(geo.score, 2),
                "distance_km": round(geo.distance_km, 2) if geo.distance_km is not None else None,
                "within_service_area": geo.within_service_area,
                "matched_point": geo.matched_point,
                "missing": geo.missing,
                "weight": round(weights["geo"], 4),
            },
            "temporal": {
                "score": temporal.score,
                "day_difference": temporal.day_difference,
                "weight": round(weights["temporal"], 4),
            },
            "bonus": {name: points for name, points in bonus},
        }

        return Aggregate(
            overall=overall,
            label=label,
            requires_review=requires_review,
            flags=flags,
            breakdown=breakdown,
            match_methods=methods,
        )
