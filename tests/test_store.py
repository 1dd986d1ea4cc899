"""Tests for correlation persistence SQL (no live database)."""
import os
import sys
from datetime import date, datetime

import psycopg2
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from scripts.correlation import store as store_module
from scripts.correlation.models import Correlation, RunSummary
from scripts.correlation.store import CorrelationStore, UPSERT_SQL


class _FakeCursor:
    def __init__(self, parent):
        self.parent = parent
        self.rowcount = parent.rowcount
        self.description = parent.description

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.parent.executed.append((sql, params))

    def fetchall(self):
        return self.parent.rows


class _FakeConn:
    def __init__(self, rowcount=0, rows=None, description=None):
        self.rowcount = rowcount
        self.rows = rows or []
        self.description = description
        self.executed = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self):
        return _FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


@pytest.fixture()
def batches(monkeypatch):
    captured = []

    def fake_execute_batch(cur, sql, rows, page_size=100):
        captured.append((sql, list(rows)))

    monkeypatch.setattr(store_module, "execute_batch", fake_execute_batch)
    return captured


def _correlation(trip_id="T1", delivery_key="D1", confidence=92.0):
    return Correlation(
        trip_id=trip_id,
        delivery_key=delivery_key,
        trip_external_id="EXT-1",
        trip_date=date(2025, 7, 25),
        fleet="Stevemacs",
        bill_of_lading="BOL1",
        delivery_date=date(2025, 7, 25),
        customer_name="ACME Mine",
        terminal_name="BP Kewdale",
        carrier="SMB",
        volume_litres=32000.0,
        overall_confidence=confidence,
        quality_label="excellent",
        requires_review=False,
        text_confidence=100.0,
        text_method="exact",
        geo_confidence=60.0,
        distance_km=60.004,
        within_service_area=True,
        matched_point="end",
        temporal_confidence=100.0,
        date_difference_days=0,
        breakdown={"text": {"score": 100.0}},
        quality_flags=[],
        match_methods=["text_exact", "geo_proximity", "temporal_same_day"],
        algorithm_version="hybrid_v2.0",
    )


# ============================================================================
# Upsert
# ============================================================================

class TestUpsert:
    def test_upsert_sql_is_keyed_and_overwrites_scores(self):
        assert "ON CONFLICT (trip_id, delivery_key) DO UPDATE" in UPSERT_SQL
        update_clause = UPSERT_SQL.split("DO UPDATE SET")[1]
        for column in ("overall_confidence", "quality_label", "confidence_breakdown",
                       "algorithm_version", "requires_manual_review"):
            assert f"{column} = EXCLUDED.{column}" in update_clause

    def test_upsert_never_touches_verification(self):
        update_clause = UPSERT_SQL.split("DO UPDATE SET")[1]
        assigned = [line.split("=")[0].strip()
                    for line in update_clause.splitlines() if " = " in line]
        for column in ("verified", "verified_by", "verified_at", "verification_notes"):
            assert column not in assigned
        # Verified rows stay out of the review queue on re-runs
        normalized = " ".join(update_clause.split())
        assert ("requires_manual_review = EXCLUDED.requires_manual_review"
                " AND NOT trip_delivery_correlations.verified,") in normalized

    def test_upsert_writes_rows_in_one_transaction(self, batches):
        conn = _FakeConn()
        store = CorrelationStore(conn)

        written = store.upsert([_correlation(), _correlation(delivery_key="D2")], "run-1")

        assert written == 2
        assert len(batches) == 1
        sql, rows = batches[0]
        assert sql == UPSERT_SQL
        assert [r[1] for r in rows] == ["D1", "D2"]
        assert rows[0][0] == "T1"
        assert rows[0][-1] == "run-1"
        assert rows[0][17] == 60.0
        assert conn.commits == 1

    def test_empty_upsert_is_noop(self, batches):
        conn = _FakeConn()
        assert CorrelationStore(conn).upsert([], "run-1") == 0
        assert batches == []
        assert conn.commits == 0

    def test_dry_run_skips_writes(self, batches):
        conn = _FakeConn()
        assert CorrelationStore(conn, dry_run=True).upsert([_correlation()], "run-1") == 1
        assert batches == []

    def test_failure_rolls_back_and_propagates(self, monkeypatch):
        def boom(cur, sql, rows, page_size=100):
            raise psycopg2.OperationalError("connection lost")

        monkeypatch.setattr(store_module, "execute_batch", boom)
        conn = _FakeConn()

        with pytest.raises(psycopg2.OperationalError):
            CorrelationStore(conn).upsert([_correlation()], "run-1")
        assert conn.rollbacks == 1
        assert conn.commits == 0


# ============================================================================
# Other writes
# ============================================================================

class TestMaintenance:
    def test_ensure_schema(self):
        conn = _FakeConn()
        CorrelationStore(conn).ensure_schema()
        sql = " ".join(s for s, _ in conn.executed)
        assert "CREATE TABLE IF NOT EXISTS trip_delivery_correlations" in sql
        assert "CREATE TABLE IF NOT EXISTS correlation_runs" in sql
        assert "PRIMARY KEY (trip_id, delivery_key)" in sql
        assert conn.commits == 1

    def test_ensure_schema_dry_run(self):
        conn = _FakeConn()
        CorrelationStore(conn, dry_run=True).ensure_schema()
        assert conn.executed == []

    def test_clear_range_keeps_verified_rows(self):
        conn = _FakeConn(rowcount=7)
        deleted = CorrelationStore(conn).clear_range(date(2025, 7, 1), date(2025, 7, 31))

        sql, params = conn.executed[0]
        assert "DELETE FROM trip_delivery_correlations" in sql
        assert "NOT verified" in sql
        assert params == [date(2025, 7, 1), date(2025, 7, 31)]
        assert deleted == 7

    def test_clear_range_with_fleet(self):
        conn = _FakeConn(rowcount=2)
        CorrelationStore(conn).clear_range(date(2025, 7, 1), date(2025, 7, 31), "Stevemacs")
        sql, params = conn.executed[0]
        assert "lower(fleet) = lower(%s)" in sql
        assert "LIKE" not in sql
        assert params[-1] == "Stevemacs"

    def test_mark_verified(self):
        conn = _FakeConn(rowcount=1)
        assert CorrelationStore(conn).mark_verified("T1", "D1", notes="ok", verified_by="sam")
        sql, params = conn.executed[0]
        assert "verified = TRUE" in sql
        assert params == ("sam", "ok", "T1", "D1")

    def test_mark_verified_missing_row(self):
        conn = _FakeConn(rowcount=0)
        assert CorrelationStore(conn).mark_verified("T1", "nope") is False


class TestRuns:
    def _summary(self):
        summary = RunSummary(
            run_id="run-1",
            start_date=date(2025, 7, 1),
            end_date=date(2025, 7, 31),
            started_at=datetime(2025, 8, 1, 9, 0, 0),
            min_confidence=50.0,
            max_trips=500,
            algorithm_version="hybrid_v2.0",
        )
        summary.trips_processed = 3
        summary.by_label = {"good": 2, "excellent": 1}
        summary.finalize("completed")
        return summary

    def test_save_run(self):
        conn = _FakeConn()
        CorrelationStore(conn).save_run(self._summary())

        sql, params = conn.executed[0]
        assert "INSERT INTO correlation_runs" in sql
        assert "ON CONFLICT (run_id) DO UPDATE" in sql
        assert params[0] == "run-1"
        assert params[1] == "completed"
        assert params[-2] == '{"excellent": 1, "good": 2}'
        assert conn.commits == 1

    def test_recent_runs(self):
        conn = _FakeConn(
            rows=[("run-1", "completed")],
            description=[("run_id",), ("status",)],
        )
        runs = CorrelationStore(conn).recent_runs(limit=5)
        assert runs == [{"run_id": "run-1", "status": "completed"}]
        assert conn.executed[0][1] == (5,)
