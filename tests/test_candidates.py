"""Tests for the delivery index and candidate selection."""
import os
import sys
from dataclasses import replace
from datetime import date

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from scripts.correlation.candidates import DeliveryIndex, CandidateSelector


@pytest.fixture()
def deliveries(make_delivery):
    return [
        make_delivery("D-SAME", date(2025, 7, 25), carrier="SMB"),
        make_delivery("D-PLUS3", date(2025, 7, 28), carrier="SMB"),
        make_delivery("D-MINUS4", date(2025, 7, 21), carrier="SMB"),
        make_delivery("D-GSF", date(2025, 7, 25), carrier="GSF"),
        make_delivery("D-COMBINED", date(2025, 7, 24), carrier="Combined"),
        make_delivery("D-NOCARRIER", date(2025, 7, 25), carrier=None),
    ]


def _keys(items):
    return [d.delivery_key for d in items]


class TestDeliveryIndex:
    def test_between_is_inclusive_and_ordered(self, deliveries):
        index = DeliveryIndex(deliveries)
        result = index.between(date(2025, 7, 24), date(2025, 7, 25))
        assert _keys(result) == ["D-COMBINED", "D-GSF", "D-NOCARRIER", "D-SAME"]

    def test_duplicate_keys_skipped(self, make_delivery):
        index = DeliveryIndex([
            make_delivery("D1", date(2025, 7, 25)),
            make_delivery("D1", date(2025, 7, 25)),
        ])
        assert len(index) == 1


class TestCandidateSelector:
    def test_window_and_carrier(self, config, deliveries, make_trip):
        selector = CandidateSelector(DeliveryIndex(deliveries), config)
        result = selector.select(make_trip(fleet="Stevemacs"))
        assert _keys(result) == ["D-COMBINED", "D-SAME", "D-PLUS3"]

    def test_other_fleet(self, config, deliveries, make_trip):
        selector = CandidateSelector(DeliveryIndex(deliveries), config)
        result = selector.select(make_trip(fleet="Great Southern Fuels"))
        assert _keys(result) == ["D-COMBINED", "D-GSF"]

    def test_combined_can_be_excluded(self, config, deliveries, make_trip):
        cfg = replace(config, include_combined_carrier=False)
        selector = CandidateSelector(DeliveryIndex(deliveries), cfg)
        result = selector.select(make_trip(fleet="Stevemacs"))
        assert "D-COMBINED" not in _keys(result)

    def test_trip_without_fleet_is_not_carrier_filtered(self, config, deliveries, make_trip):
        selector = CandidateSelector(DeliveryIndex(deliveries), config)
        result = selector.select(make_trip(fleet=None))
        assert _keys(result) == ["D-COMBINED", "D-GSF", "D-NOCARRIER", "D-SAME", "D-PLUS3"]

    def test_unmapped_fleet_matches_carrier_by_name(self, config, make_delivery, make_trip):
        index = DeliveryIndex([
            make_delivery("D1", carrier="other haulage"),
            make_delivery("D2", carrier="SMB"),
        ])
        selector = CandidateSelector(index, config)
        assert _keys(selector.select(make_trip(fleet="Other Haulage"))) == ["D1"]

    def test_tolerance_follows_config(self, config, deliveries, make_trip):
        cfg = replace(config, date_tolerance_days=0)
        selector = CandidateSelector(DeliveryIndex(deliveries), cfg)
        assert _keys(selector.select(make_trip(fleet="Stevemacs"))) == ["D-SAME"]
