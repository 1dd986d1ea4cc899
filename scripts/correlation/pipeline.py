"""
Correlation Pipeline

Batch orchestrator for trip to delivery correlation:
1. Load the location alias table and every delivery in the run window
2. For each trip, select candidate deliveries (date window + carrier)
3. Score each candidate on text, geospatial and temporal signals
4. Aggregate into an overall confidence and quality label
5. Upsert candidates at or above the confidence floor

Trips are scored on a bounded thread pool; the coordinating thread is
the only one that writes to the store.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed, CancelledError
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional, List

import psycopg2

from .aliases import LocationAliasTable
from .candidates import DeliveryIndex, CandidateSelector
from .config import CorrelationConfig, load_config
from .errors import (
    ConfigError,
    CorrelationError,
    CorrelationRunError,
    InvalidCoordinatesError,
    TripNotFoundError,
)
from .matchers import TextMatcher, GeoMatcher, TemporalMatcher
from .models import (
    Trip,
    Delivery,
    Correlation,
    RunSummary,
    STATUS_IDLE,
    STATUS_RUNNING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_CANCELLED,
)
from .scoring import ConfidenceAggregator, PreferredPartnerBonus
from .sources import TripSource, DeliverySource
from .store import CorrelationStore

logger = logging.getLogger(__name__)

# Errors that fail a single trip without stopping the run
TRIP_ERRORS = (TripNotFoundError, InvalidCoordinatesError, ValueError, TypeError, KeyError)

PROGRESS_EVERY = 100


@dataclass
class TripResult:
    """Every scored candidate for one trip, best first."""
    trip: Trip
    min_confidence: float
    candidates: List[Correlation] = field(default_factory=list)

    @property
    def accepted(self) -> List[Correlation]:
        return [c for c in self.candidates if c.overall_confidence >= self.min_confidence]

    @property
    def below_floor(self) -> int:
        return len(self.candidates) - len(self.accepted)


class CorrelationPipeline:
    """
    Hybrid text + geospatial + temporal correlation of trips to deliveries.

    Run states: idle -> running -> completed | failed | cancelled.
    """

    def __init__(self, conn=None, config: CorrelationConfig = None,
                 profile: str = None,
                 trip_source=None, delivery_source=None,
                 aliases: Optional[LocationAliasTable] = None,
                 store=None, dry_run: bool = False):
        """
        Initialize pipeline.

        Args:
            conn: Database connection (optional when sources, aliases and
                store are all supplied)
            config: CorrelationConfig instance
            profile: Predefined profile name, used when config is not given
            aliases: Preloaded alias table; loaded from conn per run otherwise
            dry_run: Score and count but do not write anything
        """
        self.conn = conn
        if config:
            self.config = config
        else:
            self.config = load_config(profile or "hybrid")

        self.trip_source = trip_source if trip_source is not None else TripSource(conn)
        self.delivery_source = (delivery_source if delivery_source is not None
                                else DeliverySource(conn))
        self.store = store if store is not None else CorrelationStore(conn, dry_run=dry_run)
        self._preloaded_aliases = aliases

        self.aliases: Optional[LocationAliasTable] = None
        self.index: Optional[DeliveryIndex] = None
        self.selector: Optional[CandidateSelector] = None
        self.text_matcher: Optional[TextMatcher] = None
        self.geo_matcher: Optional[GeoMatcher] = None
        self.temporal_matcher: Optional[TemporalMatcher] = None
        self.aggregator: Optional[ConfidenceAggregator] = None

        self.state = STATUS_IDLE
        self.summary: Optional[RunSummary] = None
        self._cancel = threading.Event()

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def load_reference(self, start: date, end: date):
        """Load aliases and deliveries for trips dated start..end."""
        cfg = self.config
        if self._preloaded_aliases is not None:
            self.aliases = self._preloaded_aliases
        else:
            self.aliases = LocationAliasTable.load(
                self.conn, min_substring_length=cfg.min_substring_length)

        tolerance = timedelta(days=cfg.date_tolerance_days)
        deliveries = self.delivery_source.fetch_window(start - tolerance, end + tolerance)
        self.index = DeliveryIndex(deliveries)
        self.selector = CandidateSelector(self.index, cfg)

        self.text_matcher = TextMatcher(cfg, self.aliases)
        self.geo_matcher = GeoMatcher(cfg, self.aliases)
        self.temporal_matcher = TemporalMatcher(cfg, self.aliases)

        bonus_scorers = []
        if cfg.preferred_partners:
            bonus_scorers.append(PreferredPartnerBonus(
                cfg.preferred_partners, cfg.preferred_partner_bonus, self.aliases))
        self.aggregator = ConfidenceAggregator(cfg, bonus_scorers)

        logger.info(f"Reference data ready: {len(self.aliases)} aliases, "
                    f"{len(self.index):,} deliveries")

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _score(self, trip: Trip, delivery: Delivery,
               min_confidence: float) -> Optional[Correlation]:
        temporal = self.temporal_matcher.match(trip.trip_date, delivery.delivery_date)
        if temporal is None:
            return None

        text = self.text_matcher.match(
            trip.start_location, trip.end_location, delivery.terminal, delivery.customer)
        geo = self.geo_matcher.match(trip, delivery)
        bonus = self.aggregator.bonus_points(trip, delivery)
        agg = self.aggregator.aggregate(text, geo, temporal, bonus, min_confidence)

        return Correlation(
            trip_id=trip.trip_id,
            delivery_key=delivery.delivery_key,
            trip_external_id=trip.external_id,
            trip_date=trip.trip_date,
            fleet=trip.fleet,
            bill_of_lading=delivery.bill_of_lading,
            delivery_date=delivery.delivery_date,
            customer_name=delivery.customer,
            terminal_name=delivery.terminal,
            carrier=delivery.carrier,
            volume_litres=delivery.volume_litres,
            overall_confidence=agg.overall,
            quality_label=agg.label,
            requires_review=agg.requires_review,
            text_confidence=text.score,
            text_method=text.method,
            geo_confidence=geo.score,
            distance_km=geo.distance_km,
            within_service_area=geo.within_service_area,
            matched_point=geo.matched_point,
            temporal_confidence=temporal.score,
            date_difference_days=temporal.day_difference,
            breakdown=agg.breakdown,
            quality_flags=agg.flags,
            match_methods=agg.match_methods,
            algorithm_version=self.config.algorithm_version,
        )

    def correlate_trip(self, trip: Trip, min_confidence: Optional[float] = None) -> TripResult:
        """
        Score every candidate delivery for one trip. Pure: nothing is written.

        Requires load_reference() to have been called for a window that
        covers the trip's date.
        """
        if self.selector is None:
            raise RuntimeError("Reference data not loaded; call load_reference() first")
        if min_confidence is None:
            min_confidence = self.config.min_confidence

        result = TripResult(trip=trip, min_confidence=min_confidence)
        for delivery in self.selector.select(trip):
            correlation = self._score(trip, delivery, min_confidence)
            if correlation is not None:
                result.candidates.append(correlation)

        result.candidates.sort(key=lambda c: (-c.overall_confidence, c.delivery_key))
        return result

    def correlate_trip_id(self, trip_id, min_confidence: Optional[float] = None) -> TripResult:
        """
        Load one trip and its candidate window, then score it.

        Raises:
            TripNotFoundError: no trip with that id
            CorrelationError: the trip has no computed date
        """
        trip = self.trip_source.get_trip(trip_id)
        if trip.trip_date is None:
            raise CorrelationError(f"Trip {trip_id} has no computed date")
        self.load_reference(trip.trip_date, trip.trip_date)
        return self.correlate_trip(trip, min_confidence)

    # ------------------------------------------------------------------
    # Batch run
    # ------------------------------------------------------------------

    def cancel(self):
        """Request cooperative cancellation; checked before each trip."""
        if not self._cancel.is_set():
            logger.info("Cancellation requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self, start: date, end: date,
            fleet_filter: Optional[str] = None,
            min_confidence: Optional[float] = None,
            max_trips: Optional[int] = None,
            clear_existing: bool = False) -> RunSummary:
        """
        Correlate every trip dated start..end.

        Returns:
            RunSummary with the run's statistics (status completed or cancelled)

        Raises:
            CorrelationRunError: systemic failure (database, configuration,
                reference data);
                .summary holds the statistics collected before the failure
        """
        if self.state == STATUS_RUNNING:
            raise RuntimeError("A run is already in progress")

        cfg = self.config
        if min_confidence is None:
            min_confidence = cfg.min_confidence
        if max_trips is None:
            max_trips = cfg.max_trips

        summary = RunSummary(
            run_id=str(uuid.uuid4()),
            start_date=start,
            end_date=end,
            started_at=datetime.now(),
            fleet_filter=fleet_filter,
            min_confidence=min_confidence,
            max_trips=max_trips,
            clear_existing=clear_existing,
            algorithm_version=cfg.algorithm_version,
            status=STATUS_RUNNING,
        )
        self.summary = summary
        self.state = STATUS_RUNNING
        self._cancel.clear()

        logger.info(f"Starting correlation run {summary.run_id}: {start} to {end}"
                    f" (fleet={fleet_filter or 'all'}, min_confidence={min_confidence},"
                    f" max_trips={max_trips})")

        try:
            cfg.validate()
            if not 0.0 <= min_confidence <= 100.0:
                raise ConfigError(f"min_confidence must be within 0..100, got {min_confidence}")
            if max_trips < 1:
                raise ConfigError("max_trips must be >= 1")
            if start > end:
                raise ConfigError(f"Start date {start} is after end date {end}")

            self.store.ensure_schema()
            if clear_existing:
                summary.cleared = self.store.clear_range(start, end, fleet_filter)

            self.load_reference(start, end)
            trips = self.trip_source.fetch_trips(start, end, fleet_filter, limit=max_trips)
            self._process(trips, summary, min_confidence)

            status = STATUS_CANCELLED if self.cancelled else STATUS_COMPLETED
            summary.finalize(status)
            self.store.save_run(summary)

        except Exception as e:
            self.state = STATUS_FAILED
            summary.finalize(STATUS_FAILED, error=str(e) or type(e).__name__)
            if isinstance(e, (psycopg2.Error, ConfigError)):
                logger.error(f"Run {summary.run_id} failed: {e}")
            else:
                logger.exception(f"Run {summary.run_id} aborted")
            self._save_failed_run(summary)
            raise CorrelationRunError(f"Run {summary.run_id} failed: {e}", summary) from e

        self.state = summary.status
        logger.info(f"Run {summary.run_id} {summary.status}: "
                    f"{summary.trips_processed:,} trips, "
                    f"{summary.correlations_created:,} correlations "
                    f"({summary.high_confidence:,} high, {summary.review_needed:,} review), "
                    f"avg {summary.average_confidence:.1f} in {summary.duration_seconds:.1f}s")
        return summary

    def _save_failed_run(self, summary: RunSummary):
        try:
            self.store.save_run(summary)
        except psycopg2.Error as e:
            logger.warning(f"Could not record failed run {summary.run_id}: {e}")

    def _score_trip(self, trip: Trip, min_confidence: float) -> Optional[TripResult]:
        if self._cancel.is_set():
            return None
        return self.correlate_trip(trip, min_confidence)

    def _process(self, trips: List[Trip], summary: RunSummary, min_confidence: float):
        """Score trips in parallel and write accepted correlations."""
        cfg = self.config
        total = len(trips)
        deadline = None
        if cfg.run_timeout_seconds:
            deadline = time.monotonic() + cfg.run_timeout_seconds

        logger.info(f"Trips to process: {total:,}")

        with ThreadPoolExecutor(max_workers=cfg.max_workers) as executor:
            futures = {
                executor.submit(self._score_trip, trip, min_confidence): trip
                for trip in trips
            }
            try:
                for future in as_completed(futures):
                    trip = futures[future]

                    if deadline is not None and not self.cancelled and time.monotonic() > deadline:
                        logger.warning(f"Run timeout of {cfg.run_timeout_seconds}s reached")
                        self.cancel()
                    if self.cancelled:
                        for pending in futures:
                            pending.cancel()

                    try:
                        result = future.result()
                    except CancelledError:
                        continue
                    except TRIP_ERRORS as e:
                        summary.trips_failed += 1
                        logger.warning(f"Trip {trip.trip_id} failed: {e}")
                        continue

                    if result is None:
                        continue
                    self._record(result, summary)

                    done = summary.trips_processed + summary.trips_failed
                    if done % PROGRESS_EVERY == 0:
                        logger.info(f"Processed: {done:,} / {total:,} "
                                    f"({summary.correlations_created:,} correlations)")
            except BaseException:
                for pending in futures:
                    pending.cancel()
                raise

    def _record(self, result: TripResult, summary: RunSummary):
        """Persist one trip's accepted candidates and update counters."""
        accepted = result.accepted
        if accepted:
            self.store.upsert(accepted, summary.run_id)

        summary.trips_processed += 1
        summary.candidates_evaluated += len(result.candidates)
        summary.candidates_below_floor += result.below_floor
        if not result.candidates:
            summary.trips_without_candidates += 1
        for correlation in accepted:
            summary.record(correlation, self.config.high_confidence)
        logger.debug(f"Trip {result.trip.trip_id}: {len(result.candidates)} candidates, "
                     f"{len(accepted)} accepted")


def run_correlation(conn, start: date, end: date,
                    profile: str = "hybrid",
                    fleet_filter: Optional[str] = None,
                    min_confidence: Optional[float] = None,
                    max_trips: Optional[int] = None,
                    clear_existing: bool = False,
                    dry_run: bool = False) -> RunSummary:
    """
    Convenience function to run one batch with a predefined profile.

    Returns:
        RunSummary with run statistics
    """
    pipeline = CorrelationPipeline(conn, profile=profile, dry_run=dry_run)
    return pipeline.run(start, end, fleet_filter=fleet_filter,
                        min_confidence=min_confidence, max_trips=max_trips,
                        clear_existing=clear_existing)
