"""Tests for confidence aggregation, quality labels and bonus scorers."""
import os
import sys
from dataclasses import replace

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from scripts.correlation.config import DEFAULT_LABEL_THRESHOLDS
from scripts.correlation.matchers.geo import GeoMatch
from scripts.correlation.matchers.temporal import TemporalMatch
from scripts.correlation.matchers.text import TextMatch
from scripts.correlation.scoring import (
    ConfidenceAggregator,
    PreferredPartnerBonus,
    quality_label,
)

LABEL_ORDER = ["excellent", "good", "fair", "poor"]


def _text(score, method="exact", flags=None):
    return TextMatch(score=score, method=method, flags=flags or [])


def _geo(score, missing=False, flags=None):
    if missing:
        return GeoMatch(0.0, flags=["missing_coordinates"], missing=True)
    return GeoMatch(score, distance_km=10.0, within_service_area=True,
                    matched_point="end", flags=flags or [])


def _temporal(score, days=0):
    return TemporalMatch(score=score, day_difference=days)


# ============================================================================
# Quality labels
# ============================================================================

class TestQualityLabel:
    @pytest.mark.parametrize("confidence,label", [
        (100, "excellent"),
        (90, "excellent"),
        (89.99, "good"),
        (75, "good"),
        (74.99, "fair"),
        (60, "fair"),
        (59.99, "poor"),
        (0, "poor"),
    ])
    def test_boundaries(self, confidence, label):
        assert quality_label(confidence, DEFAULT_LABEL_THRESHOLDS) == label

    def test_total_and_monotonic(self):
        previous_rank = 0
        for step in range(0, 1001):
            confidence = step / 10.0
            label = quality_label(confidence, DEFAULT_LABEL_THRESHOLDS)
            rank = len(LABEL_ORDER) - 1 - LABEL_ORDER.index(label)
            assert rank >= previous_rank
            previous_rank = rank


# ============================================================================
# Aggregation
# ============================================================================

class TestAggregate:
    def test_all_signals_perfect(self, config):
        agg = ConfidenceAggregator(config).aggregate(_text(100), _geo(100), _temporal(100))
        assert agg.overall == 100
        assert agg.label == "excellent"
        assert agg.requires_review is False

    def test_weighted_sum(self, config):
        agg = ConfidenceAggregator(config).aggregate(_text(80), _geo(50), _temporal(60, 2))
        # 0.4*80 + 0.2*50 + 0.4*60
        assert agg.overall == pytest.approx(66.0)
        assert agg.label == "fair"
        assert agg.requires_review is True

    def test_missing_geo_weight_redistributed(self, config):
        agg = ConfidenceAggregator(config).aggregate(
            _text(80, "substring"), _geo(0, missing=True), _temporal(40, 3))
        assert agg.overall == pytest.approx(60.0)
        assert agg.breakdown["text"]["weight"] == pytest.approx(0.5)
        assert agg.breakdown["geo"]["weight"] == 0
        assert agg.breakdown["temporal"]["weight"] == pytest.approx(0.5)

    def test_redistribution_can_be_disabled(self, config):
        cfg = replace(config, redistribute_missing_geo=False)
        agg = ConfidenceAggregator(cfg).aggregate(
            _text(80, "substring"), _geo(0, missing=True), _temporal(40, 3))
        assert agg.overall == pytest.approx(48.0)
        assert agg.label == "poor"

    def test_measured_zero_geo_keeps_its_weight(self, config):
        agg = ConfidenceAggregator(config).aggregate(_text(100), _geo(0), _temporal(100))
        assert agg.overall == pytest.approx(80.0)
        assert agg.label == "good"
        assert agg.requires_review is False

    def test_text_zero_caps_below_excellent(self, config):
        agg = ConfidenceAggregator(config).aggregate(
            _text(0, "none", ["missing_terminal_alias"]), _geo(100), _temporal(100))
        assert agg.overall == pytest.approx(60.0)
        assert agg.label != "excellent"

    def test_review_below_run_floor(self, config):
        agg = ConfidenceAggregator(config).aggregate(
            _text(100), _geo(0), _temporal(100), min_confidence=85)
        assert agg.overall == pytest.approx(80.0)
        assert agg.requires_review is True

    def test_review_for_lowest_label_even_with_low_floors(self, config):
        cfg = replace(config, min_confidence=0.0, review_confidence=0.0)
        agg = ConfidenceAggregator(cfg).aggregate(_text(80), _geo(0), _temporal(40, 3))
        assert agg.label == "poor"
        assert agg.requires_review is True

    def test_flags_merged_without_duplicates(self, config):
        agg = ConfidenceAggregator(config).aggregate(
            _text(80, "substring", ["approximate_text_match"]),
            _geo(0, missing=True),
            TemporalMatch(score=40, day_difference=3, flags=["multi_day_gap"]),
        )
        assert agg.flags == [
            "approximate_text_match",
            "missing_coordinates",
            "multi_day_gap",
            "low_confidence",
        ]

    def test_match_methods(self, config):
        agg = ConfidenceAggregator(config).aggregate(_text(100, "alias"), _geo(70), _temporal(80, 1))
        assert agg.match_methods == ["text_alias", "geo_proximity", "temporal_window"]


# ============================================================================
# Bonus scorers
# ============================================================================

class TestPreferredPartnerBonus:
    def test_bonus_for_partner_customer(self, alias_table, make_trip, make_delivery):
        bonus = PreferredPartnerBonus(["BP"], 20, alias_table)
        assert bonus.score(make_trip(), make_delivery(customer="ACME Mine")) == 20

    def test_no_bonus_for_other_parent(self, alias_table, make_trip, make_delivery):
        bonus = PreferredPartnerBonus(["BP"], 20, alias_table)
        assert bonus.score(make_trip(), make_delivery(customer="Coastal Roadhouse")) == 0

    def test_no_bonus_for_unknown_customer(self, alias_table, make_trip, make_delivery):
        bonus = PreferredPartnerBonus(["BP"], 20, alias_table)
        assert bonus.score(make_trip(), make_delivery(customer="Nobody Pty Ltd")) == 0

    def test_disabled_without_partners(self, alias_table, make_trip, make_delivery):
        bonus = PreferredPartnerBonus([], 20, alias_table)
        assert bonus.score(make_trip(), make_delivery(customer="ACME Mine")) == 0

    def test_bonus_composes_and_is_capped(self, config, alias_table, make_trip, make_delivery):
        aggregator = ConfidenceAggregator(
            config, [PreferredPartnerBonus(["bp"], 20, alias_table)])
        points = aggregator.bonus_points(make_trip(), make_delivery(customer="ACME Mine"))
        assert points == [("preferred_partner", 20.0)]

        agg = aggregator.aggregate(_text(100), _geo(100), _temporal(100), points)
        assert agg.overall == 100
        assert agg.breakdown["bonus"] == {"preferred_partner": 20.0}
        assert "bonus_preferred_partner" in agg.match_methods

    def test_bonus_lifts_score(self, config, alias_table, make_trip, make_delivery):
        aggregator = ConfidenceAggregator(
            config, [PreferredPartnerBonus(["BP"], 20, alias_table)])
        points = aggregator.bonus_points(make_trip(), make_delivery(customer="ACME Mine"))
        agg = aggregator.aggregate(_text(80), _geo(0, missing=True), _temporal(40, 3), points)
        assert agg.overall == pytest.approx(80.0)
