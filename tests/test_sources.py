"""Tests for trip and delivery source queries and row mapping."""
import os
import sys
from datetime import date
from decimal import Decimal

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from scripts.correlation.errors import TripNotFoundError
from scripts.correlation.sources import (
    TripSource,
    DeliverySource,
    TRIP_COLUMNS,
    DELIVERY_COLUMNS,
)


class _FakeCursor:
    def __init__(self, parent):
        self.parent = parent
        self.description = [(c,) for c in parent.columns]

    def execute(self, sql, params=None):
        self.parent.executed.append((sql, params))

    def fetchall(self):
        return self.parent.rows


class _FakeConn:
    def __init__(self, columns, rows):
        self.columns = columns
        self.rows = rows
        self.executed = []

    def cursor(self):
        return _FakeCursor(self)


TRIP_ROW = (
    "a1b2", "EXT-9", "1ABC234", "Stevemacs", "BP Kewdale", "ACME Mine",
    Decimal("-31.98"), Decimal("115.95"), None, None, Decimal("42.5"), date(2025, 7, 25),
)

DELIVERY_ROW = (
    "BOL1|2025-07-25|ACME", "BOL1", date(2025, 7, 25), "ACME Mine", "BP Kewdale",
    "SMB", Decimal("32000"), 3, "ULP, Diesel",
)


class TestTripSource:
    def test_fetch_trips_maps_rows(self):
        conn = _FakeConn(TRIP_COLUMNS, [TRIP_ROW])
        trips = TripSource(conn).fetch_trips(date(2025, 7, 1), date(2025, 7, 31))

        assert len(trips) == 1
        trip = trips[0]
        assert trip.trip_id == "a1b2"
        assert trip.fleet == "Stevemacs"
        assert trip.start_latitude == pytest.approx(-31.98)
        assert isinstance(trip.start_latitude, float)
        assert trip.end_latitude is None
        assert trip.trip_date == date(2025, 7, 25)

        sql, params = conn.executed[0]
        assert "FROM mtdata_trip_history" in sql
        assert "group_name" not in sql.split("WHERE")[1]
        assert "LIMIT" not in sql
        assert params == [date(2025, 7, 1), date(2025, 7, 31)]

    def test_fetch_trips_with_fleet_and_limit(self):
        conn = _FakeConn(TRIP_COLUMNS, [])
        TripSource(conn).fetch_trips(date(2025, 7, 1), date(2025, 7, 31),
                                     fleet_filter="stevemacs", limit=10)
        sql, params = conn.executed[0]
        assert "lower(group_name) = lower(%s)" in sql
        assert "LIKE" not in sql
        assert "LIMIT %s" in sql
        assert params == [date(2025, 7, 1), date(2025, 7, 31), "stevemacs", 10]

    def test_get_trip(self):
        conn = _FakeConn(TRIP_COLUMNS, [TRIP_ROW])
        assert TripSource(conn).get_trip("a1b2").external_id == "EXT-9"
        assert conn.executed[0][1] == ("a1b2",)

    def test_get_trip_not_found(self):
        conn = _FakeConn(TRIP_COLUMNS, [])
        with pytest.raises(TripNotFoundError) as exc:
            TripSource(conn).get_trip("missing")
        assert exc.value.trip_id == "missing"


class TestDeliverySource:
    def test_fetch_window(self):
        conn = _FakeConn(DELIVERY_COLUMNS, [DELIVERY_ROW])
        deliveries = DeliverySource(conn).fetch_window(date(2025, 7, 22), date(2025, 7, 28))

        assert len(deliveries) == 1
        delivery = deliveries[0]
        assert delivery.delivery_key == "BOL1|2025-07-25|ACME"
        assert delivery.volume_litres == 32000.0
        assert delivery.record_count == 3
        assert delivery.products == ["ULP", "Diesel"]

        sql, params = conn.executed[0]
        assert "FROM captive_deliveries" in sql
        assert params == (date(2025, 7, 22), date(2025, 7, 28))

    def test_products_array(self):
        row = DELIVERY_ROW[:-1] + (["ULP"],)
        conn = _FakeConn(DELIVERY_COLUMNS, [row])
        assert DeliverySource(conn).fetch_window(date(2025, 7, 1), date(2025, 7, 31))[0].products == ["ULP"]
