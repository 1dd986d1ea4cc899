"""
Trip to Delivery Correlation Module

Links GPS-tracked trips to delivery records using location text,
geospatial proximity and delivery date, and persists scored
correlations for review and reporting.

Usage:
    from scripts.correlation import CorrelationPipeline, load_config

    pipeline = CorrelationPipeline(conn, config=load_config("hybrid"))
    summary = pipeline.run(date(2025, 7, 1), date(2025, 7, 31), clear_existing=True)

    # Inspect one trip without saving
    result = pipeline.correlate_trip_id(trip_id)
"""

from .pipeline import CorrelationPipeline, TripResult, run_correlation
from .config import CorrelationConfig, PROFILES, load_config
from .errors import (
    CorrelationError,
    ConfigError,
    TripNotFoundError,
    InvalidCoordinatesError,
    CorrelationRunError,
)
from .models import Trip, Delivery, LocationAlias, Correlation, RunSummary
from .report import QualityReport

__all__ = [
    'CorrelationPipeline',
    'TripResult',
    'run_correlation',
    'CorrelationConfig',
    'PROFILES',
    'load_config',
    'CorrelationError',
    'ConfigError',
    'TripNotFoundError',
    'InvalidCoordinatesError',
    'CorrelationRunError',
    'Trip',
    'Delivery',
    'LocationAlias',
    'Correlation',
    'RunSummary',
    'QualityReport',
]
