"""
Read-only access to the trip and delivery source tables.

Trips come from mtdata_trip_history, deliveries from the
captive_deliveries view (payment line items aggregated by
bill of lading, date and customer).
"""

import logging
from datetime import date
from typing import Optional, List, Dict, Any

from .errors import TripNotFoundError
from .models import Trip, Delivery

logger = logging.getLogger(__name__)


TRIP_COLUMNS = [
    "id",
    "trip_external_id",
    "vehicle_registration",
    "group_name",
    "start_location",
    "end_location",
    "start_latitude",
    "start_longitude",
    "end_latitude",
    "end_longitude",
    "distance_km",
    "trip_date_computed",
]

DELIVERY_COLUMNS = [
    "delivery_key",
    "bill_of_lading",
    "delivery_date",
    "customer",
    "terminal",
    "carrier",
    "total_volume_litres_abs",
    "record_count",
    "products",
]


def _rows_as_dicts(cursor) -> List[Dict[str, Any]]:
    col_names = [desc[0] for desc in cursor.description]
    return [dict(zip(col_names, row)) for row in cursor.fetchall()]


class TripSource:
    """Trips from the GPS trip history table."""

    def __init__(self, conn):
        self.conn = conn

    def fetch_trips(self, start: date, end: date,
                    fleet_filter: Optional[str] = None,
                    limit: Optional[int] = None) -> List[Trip]:
        """Trips dated start..end inclusive, oldest first."""
        query = f"""
            SELECT {', '.join(TRIP_COLUMNS)}
            FROM mtdata_trip_history
            WHERE trip_date_computed BETWEEN %s AND %s
        """
        params: List[Any] = [start, end]
        if fleet_filter:
            query += " AND lower(group_name) = lower(%s)"
            params.append(fleet_filter)
        query += " ORDER BY trip_date_computed, id"
        if limit:
            query += " LIMIT %s"
            params.append(limit)

        cursor = self.conn.cursor()
        cursor.execute(query, params)
        trips = [Trip.from_row(row) for row in _rows_as_dicts(cursor)]
        logger.info(f"Loaded {len(trips):,} trips for {start} to {end}")
        return trips

    def get_trip(self, trip_id) -> Trip:
        """
        Load a single trip.

        Raises:
            TripNotFoundError: no trip with that id
        """
        cursor = self.conn.cursor()
        cursor.execute(f"""
            SELECT {', '.join(TRIP_COLUMNS)}
            FROM mtdata_trip_history
            WHERE id = %s
        """, (trip_id,))
        rows = _rows_as_dicts(cursor)
        if not rows:
            raise TripNotFoundError(trip_id)
        return Trip.from_row(rows[0])


class DeliverySource:
    """Deliveries from the aggregated captive_deliveries view."""

    def __init__(self, conn):
        self.conn = conn

    def fetch_window(self, start: date, end: date) -> List[Delivery]:
        """Deliveries dated start..end inclusive."""
        cursor = self.conn.cursor()
        cursor.execute(f"""
            SELECT {', '.join(DELIVERY_COLUMNS)}
            FROM captive_deliveries
            WHERE delivery_date BETWEEN %s AND %s
            ORDER BY delivery_date, delivery_key
        """, (start, end))
        deliveries = [Delivery.from_row(row) for row in _rows_as_dicts(cursor)]
        logger.info(f"Loaded {len(deliveries):,} deliveries for {start} to {end}")
        return deliveries
