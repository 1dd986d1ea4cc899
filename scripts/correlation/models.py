"""
Entities read and produced by the correlation engine.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, List, Dict, Any, Tuple, Iterator

LOCATION_TYPES = ("terminal", "depot", "customer", "other")


def _as_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


@dataclass
class Trip:
    """One GPS-tracked vehicle leg."""
    trip_id: Any
    trip_date: Optional[date]
    external_id: Optional[str] = None
    vehicle_registration: Optional[str] = None
    fleet: Optional[str] = None
    start_location: Optional[str] = None
    end_location: Optional[str] = None
    start_latitude: Optional[float] = None
    start_longitude: Optional[float] = None
    end_latitude: Optional[float] = None
    end_longitude: Optional[float] = None
    distance_km: Optional[float] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Trip":
        """Build a Trip from a mtdata_trip_history row (RealDictCursor)."""
        return cls(
            trip_id=row["id"],
            trip_date=_as_date(row["trip_date_computed"]),
            external_id=row.get("trip_external_id"),
            vehicle_registration=row.get("vehicle_registration"),
            fleet=row.get("group_name"),
            start_location=row.get("start_location"),
            end_location=row.get("end_location"),
            start_latitude=_as_float(row.get("start_latitude")),
            start_longitude=_as_float(row.get("start_longitude")),
            end_latitude=_as_float(row.get("end_latitude")),
            end_longitude=_as_float(row.get("end_longitude")),
            distance_km=_as_float(row.get("distance_km")),
        )

    def endpoints(self) -> Iterator[Tuple[str, Optional[float], Optional[float]]]:
        """Yield (point_name, latitude, longitude) for start then end."""
        yield ("start", self.start_latitude, self.start_longitude)
        yield ("end", self.end_latitude, self.end_longitude)


@dataclass
class Delivery:
    """One aggregated billing/delivery record."""
    delivery_key: str
    delivery_date: date
    bill_of_lading: Optional[str] = None
    customer: Optional[str] = None
    terminal: Optional[str] = None
    carrier: Optional[str] = None
    volume_litres: Optional[float] = None
    record_count: int = 1
    products: List[str] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Delivery":
        """Build a Delivery from a captive_deliveries view row."""
        products = row.get("products") or []
        if isinstance(products, str):
            products = [p.strip() for p in products.split(",") if p.strip()]
        return cls(
            delivery_key=row["delivery_key"],
            delivery_date=_as_date(row["delivery_date"]),
            bill_of_lading=row.get("bill_of_lading"),
            customer=row.get("customer"),
            terminal=row.get("terminal"),
            carrier=row.get("carrier"),
            volume_litres=_as_float(row.get("total_volume_litres_abs")),
            record_count=int(row.get("record_count") or 1),
            products=list(products),
        )


@dataclass
class LocationAlias:
    """
    Curated reference entry for one canonical location.

    Attributes:
        name: Canonical location name (unique)
        location_type: terminal, depot, customer or other
        parent_company: Owning organization, e.g. "BP"
        aliases: Known alternate spellings
        latitude/longitude: Surveyed coordinates, when known
        service_radius_km: Radius used for geospatial scoring, when set
    """
    name: str
    location_type: str = "other"
    parent_company: Optional[str] = None
    aliases: List[str] = field(default_factory=list)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    service_radius_km: Optional[float] = None

    def __post_init__(self):
        if self.location_type not in LOCATION_TYPES:
            raise ValueError(
                f"Unknown location type {self.location_type!r} for {self.name!r}. "
                f"Use one of: {', '.join(LOCATION_TYPES)}"
            )

    @property
    def is_terminal(self) -> bool:
        return self.location_type == "terminal"

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class Correlation:
    """
    A scored link between one trip and one delivery candidate.

    Keyed by (trip_id, delivery_key). The run that produced the row is
    recorded by the store, not here, so re-running the same inputs yields
    equal Correlation objects.
    """
    trip_id: Any
    delivery_key: str
    trip_external_id: Optional[str]
    trip_date: date
    fleet: Optional[str]
    bill_of_lading: Optional[str]
    delivery_date: date
    customer_name: Optional[str]
    terminal_name: Optional[str]
    carrier: Optional[str]
    volume_litres: Optional[float]
    overall_confidence: float
    quality_label: str
    requires_review: bool
    text_confidence: float
    text_method: str
    geo_confidence: float
    distance_km: Optional[float]
    within_service_area: bool
    matched_point: Optional[str]
    temporal_confidence: float
    date_difference_days: int
    breakdown: Dict[str, Any] = field(default_factory=dict)
    quality_flags: List[str] = field(default_factory=list)
    match_methods: List[str] = field(default_factory=list)
    algorithm_version: str = ""

    @property
    def key(self) -> Tuple[Any, str]:
        return (self.trip_id, self.delivery_key)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "trip_id": str(self.trip_id),
            "delivery_key": self.delivery_key,
            "trip_external_id": self.trip_external_id,
            "trip_date": self.trip_date.isoformat(),
            "fleet": self.fleet,
            "bill_of_lading": self.bill_of_lading,
            "delivery_date": self.delivery_date.isoformat(),
            "customer_name": self.customer_name,
            "terminal_name": self.terminal_name,
            "carrier": self.carrier,
            "volume_litres": self.volume_litres,
            "overall_confidence": round(self.overall_confidence, 2),
            "quality_label": self.quality_label,
            "requires_review": self.requires_review,
            "text_confidence": round(self.text_confidence, 2),
            "text_method": self.text_method,
            "geo_confidence": round(self.geo_confidence, 2),
            "distance_km": round(self.distance_km, 2) if self.distance_km is not None else None,
            "within_service_area": self.within_service_area,
            "matched_point": self.matched_point,
            "temporal_confidence": round(self.temporal_confidence, 2),
            "date_difference_days": self.date_difference_days,
            "breakdown": self.breakdown,
            "quality_flags": list(self.quality_flags),
            "match_methods": list(self.match_methods),
            "algorithm_version": self.algorithm_version,
        }


# Run states
STATUS_IDLE = "idle"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"


@dataclass
class RunSummary:
    """
    Statistics and parameters for one batch run.

    outcome tells apart the different reasons a run can end with zero
    correlations: no candidates at all, trips that failed before any
    candidate was scored, every candidate below the floor, or a run that
    was cancelled or failed.
    """
    run_id: str
    start_date: date
    end_date: date
    started_at: datetime
    fleet_filter: Optional[str] = None
    min_confidence: float = 0.0
    max_trips: int = 0
    clear_existing: bool = False
    algorithm_version: str = ""
    status: str = STATUS_IDLE
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    trips_processed: int = 0
    trips_failed: int = 0
    trips_without_candidates: int = 0
    candidates_evaluated: int = 0
    candidates_below_floor: int = 0
    correlations_created: int = 0
    high_confidence: int = 0
    review_needed: int = 0
    average_confidence: float = 0.0
    by_label: Dict[str, int] = field(default_factory=dict)
    cleared: int = 0
    error: Optional[str] = None
    confidence_total: float = 0.0

    def record(self, correlation: Correlation, high_confidence: float):
        """Count one persisted correlation."""
        self.correlations_created += 1
        self.confidence_total += correlation.overall_confidence
        if correlation.overall_confidence >= high_confidence:
            self.high_confidence += 1
        if correlation.requires_review:
            self.review_needed += 1
        label = correlation.quality_label
        self.by_label[label] = self.by_label.get(label, 0) + 1

    def finalize(self, status: str, error: Optional[str] = None):
        """Stamp completion time and derived statistics."""
        self.status = status
        self.error = error
        self.completed_at = datetime.now()
        self.duration_seconds = (self.completed_at - self.started_at).total_seconds()
        if self.correlations_created > 0:
            self.average_confidence = round(self.confidence_total / self.correlations_created, 2)

    @property
    def outcome(self) -> str:
        if self.status == STATUS_FAILED:
            return "failed"
        if self.status == STATUS_CANCELLED:
            return "cancelled"
        if self.correlations_created > 0:
            return "correlated"
        if self.candidates_evaluated == 0:
            return "trips_failed" if self.trips_failed > 0 else "no_candidates"
        return "below_floor"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "outcome": self.outcome,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "fleet_filter": self.fleet_filter,
            "min_confidence": self.min_confidence,
            "max_trips": self.max_trips,
            "clear_existing": self.clear_existing,
            "algorithm_version": self.algorithm_version,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "trips_processed": self.trips_processed,
            "trips_failed": self.trips_failed,
            "trips_without_candidates": self.trips_without_candidates,
            "candidates_evaluated": self.candidates_evaluated,
            "candidates_below_floor": self.candidates_below_floor,
            "correlations_created": self.correlations_created,
            "high_confidence": self.high_confidence,
            "review_needed": self.review_needed,
            "average_confidence": self.average_confidence,
            "by_label": dict(self.by_label),
            "cleared": self.cleared,
            "error": self.error,
        }
