"""
Base classes and shared constants for signal matchers.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..aliases import LocationAliasTable
from ..config import CorrelationConfig

# Quality flags raised by the matchers
FLAG_MISSING_TERMINAL_ALIAS = "missing_terminal_alias"
FLAG_TERMINAL_NOT_CLASSIFIED = "terminal_not_classified"
FLAG_APPROXIMATE_TEXT = "approximate_text_match"
FLAG_MISSING_COORDINATES = "missing_coordinates"
FLAG_OUTSIDE_SERVICE_AREA = "outside_service_area"
FLAG_LONG_DISTANCE = "long_distance"
FLAG_MULTI_DAY_GAP = "multi_day_gap"


class BaseMatcher(ABC):
    """
    Abstract base class for the three signal matchers.

    Matchers are pure: they read the config and the shared alias table
    and never touch the database, so one instance can be shared across
    worker threads.
    """

    signal: str = ""

    def __init__(self, config: CorrelationConfig,
                 aliases: Optional[LocationAliasTable] = None):
        self.config = config
        self.aliases = aliases

    @abstractmethod
    def match(self, *args, **kwargs):
        """Score one trip/delivery pairing on this matcher's signal."""
        pass

    def __repr__(self):
        return f"{self.__class__.__name__}(signal={self.signal!r})"
