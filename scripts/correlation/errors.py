"""
Exception hierarchy for the correlation engine.

Per-trip errors (TripNotFoundError, InvalidCoordinatesError) are caught by
the pipeline, logged and counted. ConfigError and CorrelationRunError end a
run and reach the caller.
"""


class CorrelationError(Exception):
    """Base class for all correlation engine errors."""


class ConfigError(CorrelationError):
    """Configuration failed validation (weights, thresholds, limits)."""


class TripNotFoundError(CorrelationError):
    """Referenced trip ID does not exist."""

    def __init__(self, trip_id):
        super().__init__(f"Trip not found: {trip_id}")
        self.trip_id = trip_id


class InvalidCoordinatesError(CorrelationError, ValueError):
    """Coordinates are present but not usable (non-numeric or out of range)."""


class CorrelationRunError(CorrelationError):
    """
    A batch run was aborted by a systemic failure.

    Attributes:
        summary: RunSummary collected up to the point of failure
    """

    def __init__(self, message: str, summary=None):
        super().__init__(message)
        self.summary = summary
