"""
Correlation Store

Persists correlations to trip_delivery_correlations and run summaries to
correlation_runs. Upserts are keyed by (trip_id, delivery_key) and
overwrite every scoring field, so re-running a date range is idempotent
and reflects the latest algorithm version. Verification columns belong
to human reviewers and are never written by an upsert.
"""

import json
import logging
import threading
from datetime import date
from typing import Optional, List, Dict, Any, Iterable

from psycopg2.extras import execute_batch, Json

from .models import Correlation, RunSummary

logger = logging.getLogger(__name__)


SCHEMA_SQL = [
    """
    CREATE TABLE IF NOT EXISTS trip_delivery_correlations (
        trip_id TEXT NOT NULL,
        delivery_key TEXT NOT NULL,
        trip_external_id TEXT,
        trip_date DATE NOT NULL,
        fleet TEXT,
        bill_of_lading TEXT,
        delivery_date DATE NOT NULL,
        customer_name TEXT,
        terminal_name TEXT,
        carrier TEXT,
        delivery_volume_litres NUMERIC(14,2),
        overall_confidence NUMERIC(5,2) NOT NULL
            CHECK (overall_confidence >= 0 AND overall_confidence <= 100),
        quality_label VARCHAR(20) NOT NULL,
        confidence_breakdown JSONB,
        text_confidence NUMERIC(5,2),
        text_match_method VARCHAR(20),
        geo_confidence NUMERIC(5,2),
        terminal_distance_km NUMERIC(8,2),
        within_service_area BOOLEAN,
        matching_trip_point VARCHAR(10),
        temporal_confidence NUMERIC(5,2),
        date_difference_days INT,
        requires_manual_review BOOLEAN NOT NULL DEFAULT FALSE,
        quality_flags TEXT[],
        match_methods TEXT[],
        algorithm_version VARCHAR(30),
        analysis_run_id VARCHAR(36),
        verified BOOLEAN NOT NULL DEFAULT FALSE,
        verified_by TEXT,
        verified_at TIMESTAMP,
        verification_notes TEXT,
        created_at TIMESTAMP DEFAULT NOW(),
        updated_at TIMESTAMP DEFAULT NOW(),
        PRIMARY KEY (trip_id, delivery_key)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tdc_trip_date ON trip_delivery_correlations (trip_date)",
    "CREATE INDEX IF NOT EXISTS idx_tdc_delivery_key ON trip_delivery_correlations (delivery_key)",
    """
    CREATE INDEX IF NOT EXISTS idx_tdc_review
        ON trip_delivery_correlations (requires_manual_review)
        WHERE requires_manual_review AND NOT verified
    """,
    """
    CREATE TABLE IF NOT EXISTS correlation_runs (
        run_id VARCHAR(36) PRIMARY KEY,
        status VARCHAR(20) NOT NULL,
        start_date DATE,
        end_date DATE,
        fleet_filter TEXT,
        min_confidence NUMERIC(5,2),
        max_trips INT,
        clear_existing BOOLEAN,
        algorithm_version VARCHAR(30),
        started_at TIMESTAMP,
        completed_at TIMESTAMP,
        duration_seconds NUMERIC(10,3),
        trips_processed INT,
        trips_failed INT,
        trips_without_candidates INT,
        candidates_evaluated INT,
        candidates_below_floor INT,
        correlations_created INT,
        high_confidence INT,
        review_needed INT,
        average_confidence NUMERIC(5,2),
        by_label JSONB,
        error TEXT
    )
    """,
]

UPSERT_SQL = """
    INSERT INTO trip_delivery_correlations (
        trip_id, delivery_key, trip_external_id, trip_date, fleet,
        bill_of_lading, delivery_date, customer_name, terminal_name, carrier,
        delivery_volume_litres, overall_confidence, quality_label,
        confidence_breakdown, text_confidence, text_match_method,
        geo_confidence, terminal_distance_km, within_service_area,
        matching_trip_point, temporal_confidence, date_difference_days,
        requires_manual_review, quality_flags, match_methods,
        algorithm_version, analysis_run_id
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
            %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (trip_id, delivery_key) DO UPDATE SET
        trip_external_id = EXCLUDED.trip_external_id,
        trip_date = EXCLUDED.trip_date,
        fleet = EXCLUDED.fleet,
        bill_of_lading = EXCLUDED.bill_of_lading,
        delivery_date = EXCLUDED.delivery_date,
        customer_name = EXCLUDED.customer_name,
        terminal_name = EXCLUDED.terminal_name,
        carrier = EXCLUDED.carrier,
        delivery_volume_litres = EXCLUDED.delivery_volume_litres,
        overall_confidence = EXCLUDED.overall_confidence,
        quality_label = EXCLUDED.quality_label,
        confidence_breakdown = EXCLUDED.confidence_breakdown,
        text_confidence = EXCLUDED.text_confidence,
        text_match_method = EXCLUDED.text_match_method,
        geo_confidence = EXCLUDED.geo_confidence,
        terminal_distance_km = EXCLUDED.terminal_distance_km,
        within_service_area = EXCLUDED.within_service_area,
        matching_trip_point = EXCLUDED.matching_trip_point,
        temporal_confidence = EXCLUDED.temporal_confidence,
        date_difference_days = EXCLUDED.date_difference_days,
        requires_manual_review = EXCLUDED.requires_manual_review
            AND NOT trip_delivery_correlations.verified,
        quality_flags = EXCLUDED.quality_flags,
        match_methods = EXCLUDED.match_methods,
        algorithm_version = EXCLUDED.algorithm_version,
        analysis_run_id = EXCLUDED.analysis_run_id,
        updated_at = NOW()
"""

SAVE_RUN_SQL = """
    INSERT INTO correlation_runs (
        run_id, status, start_date, end_date, fleet_filter, min_confidence,
        max_trips, clear_existing, algorithm_version, started_at,
        completed_at, duration_seconds, trips_processed, trips_failed,
        trips_without_candidates, candidates_evaluated, candidates_below_floor,
        correlations_created, high_confidence, review_needed,
        average_confidence, by_label, error
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
            %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (run_id) DO UPDATE SET
        status = EXCLUDED.status,
        completed_at = EXCLUDED.completed_at,
        duration_seconds = EXCLUDED.duration_seconds,
        trips_processed = EXCLUDED.trips_processed,
        trips_failed = EXCLUDED.trips_failed,
        trips_without_candidates = EXCLUDED.trips_without_candidates,
        candidates_evaluated = EXCLUDED.candidates_evaluated,
        candidates_below_floor = EXCLUDED.candidates_below_floor,
        correlations_created = EXCLUDED.correlations_created,
        high_confidence = EXCLUDED.high_confidence,
        review_needed = EXCLUDED.review_needed,
        average_confidence = EXCLUDED.average_confidence,
        by_label = EXCLUDED.by_label,
        error = EXCLUDED.error
"""

RUN_COLUMNS = [
    "run_id", "status", "start_date", "end_date", "fleet_filter",
    "min_confidence", "algorithm_version", "started_at", "duration_seconds",
    "trips_processed", "trips_failed", "correlations_created",
    "high_confidence", "review_needed", "average_confidence", "error",
]


def correlation_params(correlation: Correlation, run_id: Optional[str]) -> tuple:
    """Parameter tuple for UPSERT_SQL."""
    c = correlation
    return (
        str(c.trip_id),
        c.delivery_key,
        c.trip_external_id,
        c.trip_date,
        c.fleet,
        c.bill_of_lading,
        c.delivery_date,
        c.customer_name,
        c.terminal_name,
        c.carrier,
        c.volume_litres,
        c.overall_confidence,
        c.quality_label,
        Json(c.breakdown),
        c.text_confidence,
        c.text_method,
        round(c.geo_confidence, 2),
        round(c.distance_km, 2) if c.distance_km is not None else None,
        c.within_service_area,
        c.matched_point,
        c.temporal_confidence,
        c.date_difference_days,
        c.requires_review,
        list(c.quality_flags),
        list(c.match_methods),
        c.algorithm_version,
        run_id,
    )


class CorrelationStore:
    """
    Writes are serialized with a lock and each call is its own transaction:
    commit on success, rollback and re-raise on failure.
    """

    def __init__(self, conn, dry_run: bool = False):
        self.conn = conn
        self.dry_run = dry_run
        self._lock = threading.Lock()

    def _write(self, statements):
        """Run callable(cur) inside one transaction."""
        with self._lock:
            try:
                with self.conn.cursor() as cur:
                    result = statements(cur)
                self.conn.commit()
                return result
            except Exception:
                self.conn.rollback()
                raise

    def ensure_schema(self):
        """Create the correlation and run tables if missing."""
        if self.dry_run:
            return

        def create(cur):
            for sql in SCHEMA_SQL:
                cur.execute(sql)
        self._write(create)

    def upsert(self, correlations: Iterable[Correlation], run_id: Optional[str] = None) -> int:
        """Insert or update correlations; returns the number of rows written."""
        rows = [correlation_params(c, run_id) for c in correlations]
        if not rows:
            return 0
        if self.dry_run:
            logger.debug(f"Dry run: skipping upsert of {len(rows)} correlations")
            return len(rows)

        self._write(lambda cur: execute_batch(cur, UPSERT_SQL, rows, page_size=500))
        return len(rows)

    def clear_range(self, start: date, end: date, fleet_filter: Optional[str] = None) -> int:
        """
        Delete unverified correlations for trips dated start..end.
        Verified rows are kept. Returns the number of rows deleted.
        """
        query = """
            DELETE FROM trip_delivery_correlations
            WHERE trip_date BETWEEN %s AND %s
              AND NOT verified
        """
        params: List[Any] = [start, end]
        if fleet_filter:
            query += " AND lower(fleet) = lower(%s)"
            params.append(fleet_filter)

        if self.dry_run:
            logger.info(f"Dry run: would clear correlations for {start} to {end}")
            return 0

        def delete(cur):
            cur.execute(query, params)
            return cur.rowcount
        deleted = self._write(delete)
        logger.info(f"Cleared {deleted:,} correlations for {start} to {end}")
        return deleted

    def mark_verified(self, trip_id, delivery_key: str,
                      notes: Optional[str] = None,
                      verified_by: Optional[str] = None) -> bool:
        """Mark one correlation as verified by a reviewer. False if not found."""
        def update(cur):
            cur.execute("""
                UPDATE trip_delivery_correlations
                SET verified = TRUE,
                    verified_by = %s,
                    verified_at = NOW(),
                    verification_notes = %s,
                    requires_manual_review = FALSE,
                    updated_at = NOW()
                WHERE trip_id = %s AND delivery_key = %s
            """, (verified_by, notes, str(trip_id), delivery_key))
            return cur.rowcount
        return self._write(update) > 0

    def save_run(self, summary: RunSummary):
        """Insert or update the run's row in correlation_runs."""
        if self.dry_run:
            return
        params = (
            summary.run_id,
            summary.status,
            summary.start_date,
            summary.end_date,
            summary.fleet_filter,
            summary.min_confidence,
            summary.max_trips,
            summary.clear_existing,
            summary.algorithm_version,
            summary.started_at,
            summary.completed_at,
            summary.duration_seconds,
            summary.trips_processed,
            summary.trips_failed,
            summary.trips_without_candidates,
            summary.candidates_evaluated,
            summary.candidates_below_floor,
            summary.correlations_created,
            summary.high_confidence,
            summary.review_needed,
            summary.average_confidence,
            json.dumps(summary.by_label, sort_keys=True),
            summary.error,
        )
        self._write(lambda cur: cur.execute(SAVE_RUN_SQL, params))
        logger.info(f"Saved run {summary.run_id} ({summary.status})")

    def recent_runs(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent runs, newest first."""
        with self.conn.cursor() as cur:
            cur.execute(f"""
                SELECT {', '.join(RUN_COLUMNS)}
                FROM correlation_runs
                ORDER BY started_at DESC
                LIMIT %s
            """, (limit,))
            col_names = [desc[0] for desc in cur.description]
            return [dict(zip(col_names, row)) for row in cur.fetchall()]
