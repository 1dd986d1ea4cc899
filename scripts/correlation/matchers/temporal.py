"""
Temporal matching of trip date against delivery date.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional, List

from .base import BaseMatcher, FLAG_MULTI_DAY_GAP


@dataclass
class TemporalMatch:
    score: float
    day_difference: int
    flags: List[str] = field(default_factory=list)


class TemporalMatcher(BaseMatcher):
    """
    Same-day deliveries score 100, each day of difference costs
    temporal_decay_per_day points. Pairs further apart than the tolerance
    are not candidates at all, so match() returns None for them.
    """

    signal = "temporal"

    def match(self, trip_date: date, delivery_date: date) -> Optional[TemporalMatch]:
        if trip_date is None or delivery_date is None:
            raise ValueError("Trip and delivery dates are required for temporal matching")

        days = abs((trip_date - delivery_date).days)
        if days > self.config.date_tolerance_days:
            return None

        score = max(0.0, 100.0 - days * self.config.temporal_decay_per_day)
        flags = [FLAG_MULTI_DAY_GAP] if days >= 2 else []
        return TemporalMatch(score=score, day_difference=days, flags=flags)
