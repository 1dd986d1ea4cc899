"""
Signal matchers for the correlation pipeline.
"""

from .base import BaseMatcher
from .text import TextMatcher, TextMatch
from .geo import GeoMatcher, GeoMatch, haversine_km
from .temporal import TemporalMatcher, TemporalMatch

__all__ = [
    'BaseMatcher',
    'TextMatcher',
    'TextMatch',
    'GeoMatcher',
    'GeoMatch',
    'haversine_km',
    'TemporalMatcher',
    'TemporalMatch',
]
