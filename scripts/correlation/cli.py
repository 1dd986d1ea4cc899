"""
Command-line interface for the trip to delivery correlation engine.

Usage:
    python -m scripts.correlation run 2025-07-01 2025-07-31
    python -m scripts.correlation run 2025-07-01 2025-07-31 --fleet Stevemacs --clear-existing
    python -m scripts.correlation trip 1f0c...
    python -m scripts.correlation verify 1f0c... "BOL123|2025-07-25|ACME MINE" --notes "checked"
    python -m scripts.correlation report 2025-07-01 2025-07-31 --format markdown
    python -m scripts.correlation runs
    python -m scripts.correlation resolve "Kewdale Terminal"
"""

import argparse
import json
import logging
import sys
from datetime import date

import psycopg2

from db_config import get_connection, describe_target

from .errors import CorrelationError, CorrelationRunError

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD")


def _connect():
    logger.debug(f"Connecting to {describe_target()}")
    return get_connection()


def _config_from_args(args):
    from .config import load_config
    return load_config(
        getattr(args, "profile", None) or "hybrid",
        min_confidence=getattr(args, "min_confidence", None),
        max_workers=getattr(args, "workers", None),
        run_timeout_seconds=getattr(args, "timeout", None),
    )


def print_run_summary(summary):
    print(f"\n{'='*60}")
    print(f"RUN {summary.run_id}: {summary.status.upper()} ({summary.outcome})")
    print(f"{'='*60}")
    print(f"  Window:             {summary.start_date} to {summary.end_date}")
    print(f"  Fleet:              {summary.fleet_filter or 'all'}")
    print(f"  Trips processed:    {summary.trips_processed:,}")
    print(f"  Trips failed:       {summary.trips_failed:,}")
    print(f"  No candidates:      {summary.trips_without_candidates:,}")
    print(f"  Candidates scored:  {summary.candidates_evaluated:,}")
    print(f"  Below floor:        {summary.candidates_below_floor:,}")
    print(f"  Correlations:       {summary.correlations_created:,}")
    print(f"  High confidence:    {summary.high_confidence:,}")
    print(f"  Needs review:       {summary.review_needed:,}")
    print(f"  Average confidence: {summary.average_confidence:.1f}")
    print(f"  Duration:           {summary.duration_seconds:.1f}s")
    if summary.by_label:
        print()
        print("  By label:")
        for label, count in sorted(summary.by_label.items(), key=lambda kv: -kv[1]):
            print(f"    {label}: {count:,}")
    if summary.error:
        print(f"\n  Error: {summary.error}")
    print()


def cmd_list_profiles(args):
    """List available scoring profiles."""
    from .config import PROFILES

    print("\n" + "=" * 60)
    print("AVAILABLE CORRELATION PROFILES")
    print("=" * 60 + "\n")

    for name, config in PROFILES.items():
        weights = config.weights
        print(f"  {name}")
        print(f"    Weights: text {weights['text']:.2f}, geo {weights['geo']:.2f}, "
              f"temporal {weights['temporal']:.2f}")
        if config.preferred_partners:
            print(f"    Preferred partners: {', '.join(config.preferred_partners)} "
                  f"(+{config.preferred_partner_bonus:g})")
        print()


def cmd_run(args):
    """Run a correlation batch."""
    from .pipeline import CorrelationPipeline

    if args.list:
        cmd_list_profiles(args)
        return

    if args.start is None or args.end is None:
        print("Error: start and end dates are required")
        sys.exit(1)

    config = _config_from_args(args)
    conn = _connect()

    try:
        pipeline = CorrelationPipeline(conn, config=config, dry_run=args.dry_run)
        try:
            summary = pipeline.run(
                args.start,
                args.end,
                fleet_filter=args.fleet,
                min_confidence=args.min_confidence,
                max_trips=args.max_trips,
                clear_existing=args.clear_existing,
            )
        except CorrelationRunError as e:
            if e.summary is not None and args.format == "summary":
                print_run_summary(e.summary)
            raise

        if args.format == "json":
            print(json.dumps(summary.to_dict(), indent=2, default=str))
        else:
            print_run_summary(summary)

    finally:
        conn.close()


def cmd_trip(args):
    """Score every candidate for one trip without saving."""
    from .pipeline import CorrelationPipeline

    config = _config_from_args(args)
    conn = _connect()

    try:
        pipeline = CorrelationPipeline(conn, config=config, dry_run=True)
        result = pipeline.correlate_trip_id(args.trip_id, min_confidence=args.min_confidence)

        if args.format == "json":
            print(json.dumps([c.to_dict() for c in result.candidates], indent=2, default=str))
            return

        trip = result.trip
        print(f"\n{'='*60}")
        print(f"TRIP {trip.trip_id} ({trip.external_id or '-'})")
        print(f"{'='*60}")
        print(f"  Date:  {trip.trip_date}")
        print(f"  Fleet: {trip.fleet or '-'}")
        print(f"  From:  {trip.start_location or '-'}")
        print(f"  To:    {trip.end_location or '-'}")
        print()

        if not result.candidates:
            print("  NO CANDIDATE DELIVERIES")
            print()
            return

        for c in result.candidates:
            marker = "*" if c.overall_confidence >= result.min_confidence else " "
            print(f" {marker} {c.delivery_key}")
            print(f"    {c.overall_confidence:6.2f} {c.quality_label}"
                  f"{'  (review)' if c.requires_review else ''}")
            print(f"    text {c.text_confidence:.0f} [{c.text_method}]"
                  f"  geo {c.geo_confidence:.1f}"
                  f"{f' ({c.distance_km:.1f} km)' if c.distance_km is not None else ''}"
                  f"  temporal {c.temporal_confidence:.0f} ({c.date_difference_days}d)")
            print(f"    {c.terminal_name or '-'} -> {c.customer_name or '-'}")
            if c.quality_flags:
                print(f"    flags: {', '.join(c.quality_flags)}")
        print()
        print(f"  {len(result.accepted)} of {len(result.candidates)} at or above "
              f"{result.min_confidence:g}")
        print()

    finally:
        conn.close()


def cmd_verify(args):
    """Mark a correlation as verified."""
    from .store import CorrelationStore

    conn = _connect()
    try:
        store = CorrelationStore(conn)
        if not store.mark_verified(args.trip_id, args.delivery_key,
                                   notes=args.notes, verified_by=args.by):
            print(f"Error: no correlation for trip {args.trip_id} / {args.delivery_key}")
            sys.exit(1)
        print(f"Verified trip {args.trip_id} / {args.delivery_key}")
    finally:
        conn.close()


def cmd_report(args):
    """Generate a quality report."""
    from .report import QualityReport

    conn = _connect()
    try:
        report = QualityReport(conn)
        report.generate(args.start, args.end, top=args.top)

        if args.format == "markdown":
            print(report.to_markdown())
        elif args.format == "json":
            print(json.dumps(report.to_dict(), indent=2, default=str))
        else:
            report.print_summary()
    finally:
        conn.close()


def cmd_runs(args):
    """List recent runs."""
    from .store import CorrelationStore

    conn = _connect()
    try:
        runs = CorrelationStore(conn).recent_runs(limit=args.limit)
        if not runs:
            print("No runs recorded")
            return

        print(f"\n{'Run':<38} {'Status':<10} {'Window':<23} {'Trips':>7} {'Corr':>7} {'Avg':>6}")
        print("-" * 95)
        for run in runs:
            window = f"{run['start_date']}..{run['end_date']}"
            avg = float(run['average_confidence'] or 0)
            print(f"{run['run_id']:<38} {run['status']:<10} {window:<23} "
                  f"{run['trips_processed'] or 0:>7,} {run['correlations_created'] or 0:>7,} "
                  f"{avg:>6.1f}")
        print()
    finally:
        conn.close()


def cmd_resolve(args):
    """Show how location names resolve against the alias table."""
    from .aliases import LocationAliasTable

    conn = _connect()
    try:
        table = LocationAliasTable.load(conn)
        for name in args.names:
            entry = table.resolve(name)
            if entry is None:
                print(f"  {name!r}: NO MATCH")
            else:
                coords = (f" ({entry.latitude:.4f}, {entry.longitude:.4f})"
                          if entry.has_coordinates else "")
                print(f"  {name!r}: {entry.name} [{entry.location_type}]"
                      f"{f' {entry.parent_company}' if entry.parent_company else ''}{coords}")
    finally:
        conn.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Trip to Delivery Correlation CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m scripts.correlation run --list
  python -m scripts.correlation run 2025-07-01 2025-07-31 --max-trips 200
  python -m scripts.correlation run 2025-07-01 2025-07-31 --fleet Stevemacs --clear-existing
  python -m scripts.correlation trip 1f0c2b9e-... --format json
  python -m scripts.correlation report 2025-07-01 2025-07-31 --format markdown
  python -m scripts.correlation resolve "Kewdale" "BP Kwinana"
        """
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Run command
    run_parser = subparsers.add_parser('run', help='Correlate trips in a date range')
    run_parser.add_argument('start', nargs='?', type=_parse_date, help='First trip date (YYYY-MM-DD)')
    run_parser.add_argument('end', nargs='?', type=_parse_date, help='Last trip date (YYYY-MM-DD)')
    run_parser.add_argument('--list', '-l', action='store_true', help='List available profiles')
    run_parser.add_argument('--profile', '-p', default='hybrid', help='Scoring profile')
    run_parser.add_argument('--fleet', '-f', help='Only trips for this fleet/group')
    run_parser.add_argument('--min-confidence', type=float, help='Persistence floor (0-100)')
    run_parser.add_argument('--max-trips', type=int, help='Maximum trips to process')
    run_parser.add_argument('--workers', type=int, help='Scoring threads')
    run_parser.add_argument('--timeout', type=float, help='Wall-clock limit in seconds')
    run_parser.add_argument('--clear-existing', action='store_true',
                            help='Delete unverified correlations in range first')
    run_parser.add_argument('--dry-run', action='store_true', help='Score without writing')
    run_parser.add_argument('--format', choices=['summary', 'json'], default='summary',
                            help='Output format')
    run_parser.set_defaults(func=cmd_run)

    # Trip command
    trip_parser = subparsers.add_parser('trip', help='Analyze candidates for one trip')
    trip_parser.add_argument('trip_id', help='Trip id')
    trip_parser.add_argument('--profile', '-p', default='hybrid', help='Scoring profile')
    trip_parser.add_argument('--min-confidence', type=float, help='Persistence floor (0-100)')
    trip_parser.add_argument('--format', choices=['summary', 'json'], default='summary',
                             help='Output format')
    trip_parser.set_defaults(func=cmd_trip)

    # Verify command
    verify_parser = subparsers.add_parser('verify', help='Mark a correlation as verified')
    verify_parser.add_argument('trip_id', help='Trip id')
    verify_parser.add_argument('delivery_key', help='Delivery key')
    verify_parser.add_argument('--notes', '-n', help='Verification notes')
    verify_parser.add_argument('--by', help='Reviewer name')
    verify_parser.set_defaults(func=cmd_verify)

    # Report command
    report_parser = subparsers.add_parser('report', help='Quality report for a date range')
    report_parser.add_argument('start', type=_parse_date, help='First trip date (YYYY-MM-DD)')
    report_parser.add_argument('end', type=_parse_date, help='Last trip date (YYYY-MM-DD)')
    report_parser.add_argument('--top', type=int, default=20, help='Rows per breakdown')
    report_parser.add_argument('--format', choices=['summary', 'markdown', 'json'],
                               default='summary', help='Output format')
    report_parser.set_defaults(func=cmd_report)

    # Runs command
    runs_parser = subparsers.add_parser('runs', help='List recent runs')
    runs_parser.add_argument('--limit', type=int, default=10, help='Runs to show')
    runs_parser.set_defaults(func=cmd_runs)

    # Resolve command
    resolve_parser = subparsers.add_parser('resolve', help='Resolve location names')
    resolve_parser.add_argument('names', nargs='+', help='Location names')
    resolve_parser.set_defaults(func=cmd_resolve)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except (CorrelationError, psycopg2.Error, ValueError) as e:
        logger.error(str(e))
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
