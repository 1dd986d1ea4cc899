"""
Correlation Configuration

Defines the CorrelationConfig dataclass, quality-label defaults, fleet to
carrier mapping, and predefined scoring profiles.
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Optional, List, Dict, Tuple, Any

from dotenv import load_dotenv

from .errors import ConfigError

logger = logging.getLogger(__name__)


ALGORITHM_VERSION = "hybrid_v2.0"

# Quality labels, best first. Anything below the last threshold is LABEL_POOR.
LABEL_EXCELLENT = "excellent"
LABEL_GOOD = "good"
LABEL_FAIR = "fair"
LABEL_POOR = "poor"

DEFAULT_LABEL_THRESHOLDS: Tuple[Tuple[float, str], ...] = (
    (90.0, LABEL_EXCELLENT),
    (75.0, LABEL_GOOD),
    (60.0, LABEL_FAIR),
)

# Trip group name (lower case) -> carrier codes used on delivery records
DEFAULT_FLEET_CARRIERS: Dict[str, Tuple[str, ...]] = {
    "stevemacs": ("SMB",),
    "smb": ("SMB",),
    "great southern fuels": ("GSF",),
    "gsfs": ("GSF",),
    "gsf": ("GSF",),
}

COMBINED_CARRIER = "Combined"

# Allowed (min, max) per signal weight
WEIGHT_RANGES: Dict[str, Tuple[float, float]] = {
    "text": (0.35, 0.40),
    "geo": (0.20, 0.35),
    "temporal": (0.35, 0.40),
}


@dataclass
class CorrelationConfig:
    """All tunables for one correlation run."""
    name: str = "hybrid"

    # Signal weights, must sum to 1.0
    text_weight: float = 0.40
    geo_weight: float = 0.20
    temporal_weight: float = 0.40

    # Temporal
    date_tolerance_days: int = 3
    temporal_decay_per_day: float = 20.0

    # Geospatial
    service_radius_km: float = 150.0
    long_distance_km: float = 100.0
    redistribute_missing_geo: bool = True

    # Text
    min_substring_length: int = 3

    # Confidence floors
    min_confidence: float = 50.0
    review_confidence: float = 70.0
    high_confidence: float = 80.0
    label_thresholds: Tuple[Tuple[float, str], ...] = DEFAULT_LABEL_THRESHOLDS
    lowest_label: str = LABEL_POOR

    # Candidate selection
    fleet_carriers: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_FLEET_CARRIERS))
    include_combined_carrier: bool = True

    # Preferred-partner bonus (disabled while preferred_partners is empty)
    preferred_partners: Tuple[str, ...] = ()
    preferred_partner_bonus: float = 20.0

    # Run limits
    max_trips: int = 500
    max_workers: int = 4
    run_timeout_seconds: Optional[float] = None

    algorithm_version: str = ALGORITHM_VERSION

    @property
    def weights(self) -> Dict[str, float]:
        return {
            "text": self.text_weight,
            "geo": self.geo_weight,
            "temporal": self.temporal_weight,
        }

    @property
    def labels(self) -> List[str]:
        """All quality labels, best first."""
        return [label for _, label in self.label_thresholds] + [self.lowest_label]

    def carriers_for_fleet(self, fleet: Optional[str]) -> Tuple[str, ...]:
        """Carrier codes a trip's fleet group delivers under (may be empty)."""
        if not fleet:
            return ()
        key = fleet.strip().lower()
        if key in self.fleet_carriers:
            return self.fleet_carriers[key]
        # Unmapped fleets only match deliveries carrying their own name
        return (fleet.strip(),)

    def validate(self) -> "CorrelationConfig":
        """
        Check the configuration once, before a run starts.

        Raises:
            ConfigError: on the first invalid setting found
        """
        for name, weight in self.weights.items():
            if not 0.0 <= weight <= 1.0:
                raise ConfigError(f"{name} weight must be within 0..1, got {weight}")
        total = sum(self.weights.values())
        if abs(total - 1.0) > 1e-6:
            raise ConfigError(f"Weights must sum to 1.0, got {total:.4f}")
        for name, weight in self.weights.items():
            low, high = WEIGHT_RANGES[name]
            if not low - 1e-9 <= weight <= high + 1e-9:
                raise ConfigError(f"{name} weight {weight} outside allowed range {low}..{high}")

        if self.date_tolerance_days < 0:
            raise ConfigError("date_tolerance_days must be >= 0")
        if self.temporal_decay_per_day < 0:
            raise ConfigError("temporal_decay_per_day must be >= 0")
        if self.service_radius_km <= 0:
            raise ConfigError("service_radius_km must be > 0")
        if self.min_substring_length < 1:
            raise ConfigError("min_substring_length must be >= 1")

        for name in ("min_confidence", "review_confidence", "high_confidence"):
            value = getattr(self, name)
            if not 0.0 <= value <= 100.0:
                raise ConfigError(f"{name} must be within 0..100, got {value}")

        if not self.label_thresholds:
            raise ConfigError("label_thresholds must not be empty")
        previous = None
        for threshold, label in self.label_thresholds:
            if not 0.0 < threshold <= 100.0:
                raise ConfigError(f"Label threshold {threshold} must be within (0, 100]")
            if previous is not None and threshold >= previous:
                raise ConfigError("Label thresholds must be strictly descending")
            previous = threshold
        labels = self.labels
        if len(set(labels)) != len(labels):
            raise ConfigError(f"Quality labels must be unique: {labels}")

        if self.preferred_partner_bonus < 0:
            raise ConfigError("preferred_partner_bonus must be >= 0")
        if self.max_trips < 1:
            raise ConfigError("max_trips must be >= 1")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be >= 1")
        if self.run_timeout_seconds is not None and self.run_timeout_seconds <= 0:
            raise ConfigError("run_timeout_seconds must be > 0 when set")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "weights": self.weights,
            "date_tolerance_days": self.date_tolerance_days,
            "service_radius_km": self.service_radius_km,
            "min_confidence": self.min_confidence,
            "review_confidence": self.review_confidence,
            "label_thresholds": [list(t) for t in self.label_thresholds],
            "redistribute_missing_geo": self.redistribute_missing_geo,
            "preferred_partners": list(self.preferred_partners),
            "algorithm_version": self.algorithm_version,
        }


# ============================================================================
# PREDEFINED PROFILES
# ============================================================================

PROFILES: Dict[str, CorrelationConfig] = {

    # Text + geospatial + temporal, geo weight redistributed when absent
    "hybrid": CorrelationConfig(),

    # Fleets with reliable GPS fixes at every terminal
    "geo_heavy": CorrelationConfig(
        name="geo_heavy",
        text_weight=0.35,
        geo_weight=0.30,
        temporal_weight=0.35,
        redistribute_missing_geo=False,
    ),

    # Hybrid plus the preferred-partner bonus for BP supplied customers
    "preferred_partner": CorrelationConfig(
        name="preferred_partner",
        text_weight=0.35,
        geo_weight=0.30,
        temporal_weight=0.35,
        preferred_partners=("BP",),
    ),
}


def get_profile(name: str) -> CorrelationConfig:
    """Get a copy of a predefined profile by name."""
    if name not in PROFILES:
        available = ", ".join(PROFILES.keys())
        raise ValueError(f"Unknown profile: {name}. Available: {available}")
    profile = PROFILES[name]
    return replace(profile, fleet_carriers=dict(profile.fleet_carriers))


def list_profiles() -> List[str]:
    """List all available profile names."""
    return list(PROFILES.keys())


# Environment variable -> (field name, parser)
_ENV_OVERRIDES = {
    "CORRELATION_MIN_CONFIDENCE": ("min_confidence", float),
    "CORRELATION_REVIEW_CONFIDENCE": ("review_confidence", float),
    "CORRELATION_DATE_TOLERANCE_DAYS": ("date_tolerance_days", int),
    "CORRELATION_SERVICE_RADIUS_KM": ("service_radius_km", float),
    "CORRELATION_MAX_TRIPS": ("max_trips", int),
    "CORRELATION_MAX_WORKERS": ("max_workers", int),
    "CORRELATION_RUN_TIMEOUT_SECONDS": ("run_timeout_seconds", float),
    "CORRELATION_ALGORITHM_VERSION": ("algorithm_version", str),
}


def _env_overrides() -> Dict[str, Any]:
    """Read CORRELATION_* variables, skipping values that do not parse."""
    values = {}
    for env_name, (field_name, parser) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None or raw.strip() == "":
            continue
        try:
            values[field_name] = parser(raw.strip())
        except ValueError:
            logger.warning(f"Ignoring {env_name}={raw!r}: not a valid {parser.__name__}")
    return values


def load_config(profile: str = "hybrid", **overrides) -> CorrelationConfig:
    """
    Build and validate the configuration for a run.

    Precedence: profile defaults < CORRELATION_* environment < overrides.
    Overrides set to None are ignored so CLI flags can be passed straight
    through.

    Raises:
        ValueError: unknown profile or override name
        ConfigError: the resulting configuration is invalid
    """
    load_dotenv(override=False)

    config = get_profile(profile)
    known = {f.name for f in fields(CorrelationConfig)}

    updates = _env_overrides()
    for key, value in overrides.items():
        if key not in known:
            raise ValueError(f"Unknown configuration field: {key}")
        if value is not None:
            updates[key] = value

    config = replace(config, **updates)
    return config.validate()
