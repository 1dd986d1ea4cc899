"""
Geospatial proximity between trip endpoints and the delivery location.
"""

import math
from dataclasses import dataclass, field
from typing import Optional, List, Tuple

from .base import (
    BaseMatcher,
    FLAG_MISSING_COORDINATES,
    FLAG_OUTSIDE_SERVICE_AREA,
    FLAG_LONG_DISTANCE,
)
from ..errors import InvalidCoordinatesError
from ..models import Trip, Delivery, LocationAlias

EARTH_RADIUS_KM = 6371.0


@dataclass
class GeoMatch:
    score: float
    distance_km: Optional[float] = None
    within_service_area: bool = False
    matched_point: Optional[str] = None
    flags: List[str] = field(default_factory=list)
    missing: bool = False


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    lat1_r, lon1_r, lat2_r, lon2_r = map(math.radians, [lat1, lon1, lat2, lon2])

    dlat = lat2_r - lat1_r
    dlon = lon2_r - lon1_r

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlon / 2) ** 2
    c = 2 * math.asin(min(1.0, math.sqrt(a)))

    return EARTH_RADIUS_KM * c


def proximity_score(distance_km: float, radius_km: float) -> float:
    """Linear decay from 100 at the location to 0 at the service radius."""
    if distance_km >= radius_km:
        return 0.0
    return 100.0 * (1.0 - distance_km / radius_km)


def _checked_point(trip_id, point: str, lat, lon) -> Optional[Tuple[float, float]]:
    """Return (lat, lon) floats, None when absent, raise when malformed."""
    if lat is None or lon is None:
        return None
    try:
        lat_f = float(lat)
        lon_f = float(lon)
    except (TypeError, ValueError):
        raise InvalidCoordinatesError(
            f"Trip {trip_id} {point} coordinates are not numeric: ({lat!r}, {lon!r})")
    if math.isnan(lat_f) or math.isnan(lon_f) or not -90.0 <= lat_f <= 90.0 or not -180.0 <= lon_f <= 180.0:
        raise InvalidCoordinatesError(
            f"Trip {trip_id} {point} coordinates out of range: ({lat_f}, {lon_f})")
    return lat_f, lon_f


class GeoMatcher(BaseMatcher):
    """
    Scores how close the trip came to the delivery's terminal.

    The delivery location is taken from the terminal's alias entry, or the
    customer's entry when the terminal has no coordinates. The closest trip
    endpoint wins. Missing coordinates on either side score 0 with a
    missing_coordinates flag.
    """

    signal = "geo"

    def delivery_location(self, delivery: Delivery) -> Optional[LocationAlias]:
        if self.aliases is None:
            return None
        for name in (delivery.terminal, delivery.customer):
            entry = self.aliases.resolve(name)
            if entry is not None and entry.has_coordinates:
                return entry
        return None

    def match(self, trip: Trip, delivery: Delivery) -> GeoMatch:
        points = []
        for point, lat, lon in trip.endpoints():
            checked = _checked_point(trip.trip_id, point, lat, lon)
            if checked is not None:
                points.append((point, checked))

        location = self.delivery_location(delivery)
        if not points or location is None:
            return GeoMatch(0.0, flags=[FLAG_MISSING_COORDINATES], missing=True)

        radius = location.service_radius_km or self.config.service_radius_km

        best_point, best_distance = None, None
        for point, (lat, lon) in points:
            distance = haversine_km(lat, lon, location.latitude, location.longitude)
            if best_distance is None or distance < best_distance:
                best_point, best_distance = point, distance

        within = best_distance < radius
        flags = []
        if not within:
            flags.append(FLAG_OUTSIDE_SERVICE_AREA)
        if best_distance > self.config.long_distance_km:
            flags.append(FLAG_LONG_DISTANCE)

        return GeoMatch(
            score=proximity_score(best_distance, radius),
            distance_km=best_distance,
            within_service_area=within,
            matched_point=best_point,
            flags=flags,
        )
