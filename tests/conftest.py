"""
Shared test fixtures for the correlation engine test suite.
"""
import sys
import os
from datetime import date

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from scripts.correlation.aliases import LocationAliasTable
from scripts.correlation.config import CorrelationConfig
from scripts.correlation.models import Trip, Delivery, LocationAlias


@pytest.fixture(autouse=True)
def _clean_correlation_env(monkeypatch):
    """Keep CORRELATION_* variables from the shell out of the tests."""
    for name in list(os.environ):
        if name.startswith("CORRELATION_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def config():
    return CorrelationConfig()


@pytest.fixture()
def alias_entries():
    return [
        LocationAlias("BP Kewdale", "terminal", "BP",
                      ["Kewdale Terminal", "KWD"], -31.98, 115.95),
        LocationAlias("Mobil Kwinana", "terminal", "Mobil",
                      ["Kwinana Mobil Terminal"]),
        LocationAlias("GSFS Narrogin", "depot", "GSF",
                      ["Narrogin Depot"], -32.93, 117.18, 80.0),
        LocationAlias("ACME Mine Site", "customer", "BP",
                      ["ACME Mine"], -30.75, 121.47),
        LocationAlias("Coastal Roadhouse", "customer", "Mobil", [], -31.50, 115.60),
    ]


@pytest.fixture()
def alias_table(alias_entries):
    return LocationAliasTable(alias_entries)


@pytest.fixture()
def make_trip():
    def _make(trip_id="T1", trip_date=date(2025, 7, 25), **kwargs):
        kwargs.setdefault("fleet", "Stevemacs")
        return Trip(trip_id=trip_id, trip_date=trip_date, **kwargs)
    return _make


@pytest.fixture()
def make_delivery():
    def _make(delivery_key="D1", delivery_date=date(2025, 7, 25), **kwargs):
        kwargs.setdefault("carrier", "SMB")
        return Delivery(delivery_key=delivery_key, delivery_date=delivery_date, **kwargs)
    return _make
