"""
Quality Report Generation

Summarizes persisted correlations over a date range: confidence bands,
quality flags, terminals, carriers, the manual review backlog and the
trips and deliveries that were left without any correlation.
"""

from datetime import date
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)


@dataclass
class BreakdownRow:
    """One row of a grouped breakdown."""
    key: str
    count: int
    average_confidence: Optional[float] = None


def _float(value) -> Optional[float]:
    return float(value) if value is not None else None


@dataclass
class QualityReport:
    """
    Quality report for correlations with trip dates in a range.
    """
    conn: Any
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    # Totals
    total_correlations: int = 0
    trips_correlated: int = 0
    deliveries_correlated: int = 0
    average_confidence: Optional[float] = None
    review_backlog: int = 0
    verified: int = 0
    uncorrelated_trips: int = 0
    uncorrelated_deliveries: int = 0

    # Breakdowns
    by_label: List[BreakdownRow] = field(default_factory=list)
    by_flag: List[BreakdownRow] = field(default_factory=list)
    by_terminal: List[BreakdownRow] = field(default_factory=list)
    by_carrier: List[BreakdownRow] = field(default_factory=list)

    def generate(self, start: date, end: date, top: int = 20) -> 'QualityReport':
        """
        Populate the report from the database.

        Args:
            start: First trip date (inclusive)
            end: Last trip date (inclusive)
            top: Rows to keep for the terminal and carrier breakdowns

        Returns:
            Self with populated report data
        """
        self.start_date = start
        self.end_date = end
        cursor = self.conn.cursor()

        cursor.execute("""
            SELECT COUNT(*),
                   COUNT(DISTINCT trip_id),
                   COUNT(DISTINCT delivery_key),
                   AVG(overall_confidence),
                   COUNT(*) FILTER (WHERE requires_manual_review AND NOT verified),
                   COUNT(*) FILTER (WHERE verified)
            FROM trip_delivery_correlations
            WHERE trip_date BETWEEN %s AND %s
        """, (start, end))
        row = cursor.fetchone()
        self.total_correlations = row[0] or 0
        self.trips_correlated = row[1] or 0
        self.deliveries_correlated = row[2] or 0
        self.average_confidence = _float(row[3])
        self.review_backlog = row[4] or 0
        self.verified = row[5] or 0

        cursor.execute("""
            SELECT quality_label, COUNT(*), AVG(overall_confidence)
            FROM trip_delivery_correlations
            WHERE trip_date BETWEEN %s AND %s
            GROUP BY quality_label
            ORDER BY AVG(overall_confidence) DESC
        """, (start, end))
        self.by_label = [BreakdownRow(r[0], r[1], _float(r[2])) for r in cursor.fetchall()]

        cursor.execute("""
            SELECT flag, COUNT(*)
            FROM trip_delivery_correlations, unnest(quality_flags) AS flag
            WHERE trip_date BETWEEN %s AND %s
            GROUP BY flag
            ORDER BY COUNT(*) DESC, flag
        """, (start, end))
        self.by_flag = [BreakdownRow(r[0], r[1]) for r in cursor.fetchall()]

        for column, attr in (("terminal_name", "by_terminal"), ("carrier", "by_carrier")):
            cursor.execute(f"""
                SELECT COALESCE({column}, '(none)'), COUNT(*), AVG(overall_confidence)
                FROM trip_delivery_correlations
                WHERE trip_date BETWEEN %s AND %s
                GROUP BY 1
                ORDER BY COUNT(*) DESC, 1
                LIMIT %s
            """, (start, end, top))
            setattr(self, attr, [BreakdownRow(r[0], r[1], _float(r[2])) for r in cursor.fetchall()])

        cursor.execute("""
            SELECT COUNT(*)
            FROM mtdata_trip_history t
            WHERE t.trip_date_computed BETWEEN %s AND %s
              AND NOT EXISTS (
                  SELECT 1 FROM trip_delivery_correlations c
                  WHERE c.trip_id = t.id::text
              )
        """, (start, end))
        self.uncorrelated_trips = cursor.fetchone()[0] or 0

        cursor.execute("""
            SELECT COUNT(*)
            FROM captive_deliveries d
            WHERE d.delivery_date BETWEEN %s AND %s
              AND NOT EXISTS (
                  SELECT 1 FROM trip_delivery_correlations c
                  WHERE c.delivery_key = d.delivery_key
              )
        """, (start, end))
        self.uncorrelated_deliveries = cursor.fetchone()[0] or 0

        logger.info(f"Quality report {start} to {end}: {self.total_correlations:,} correlations")
        return self

    @property
    def review_rate(self) -> float:
        if not self.total_correlations:
            return 0.0
        return self.review_backlog / self.total_correlations * 100

    def to_markdown(self) -> str:
        """Generate markdown report."""
        lines = []

        lines.append(f"# Correlation Quality: {self.start_date} to {self.end_date}")
        lines.append("")

        lines.append("## Summary")
        lines.append("")
        lines.append("| Metric | Value |")
        lines.append("|--------|-------|")
        lines.append(f"| Correlations | {self.total_correlations:,} |")
        lines.append(f"| Trips correlated | {self.trips_correlated:,} |")
        lines.append(f"| Deliveries correlated | {self.deliveries_correlated:,} |")
        avg = f"{self.average_confidence:.1f}" if self.average_confidence is not None else "N/A"
        lines.append(f"| Average confidence | {avg} |")
        lines.append(f"| Review backlog | {self.review_backlog:,} ({self.review_rate:.1f}%) |")
        lines.append(f"| Verified | {self.verified:,} |")
        lines.append(f"| Trips without correlation | {self.uncorrelated_trips:,} |")
        lines.append(f"| Deliveries without correlation | {self.uncorrelated_deliveries:,} |")
        lines.append("")

        sections = [
            ("Quality Labels", "Label", self.by_label),
            ("Terminals", "Terminal", self.by_terminal),
            ("Carriers", "Carrier", self.by_carrier),
        ]
        for title, heading, rows in sections:
            if not rows:
                continue
            lines.append(f"## {title}")
            lines.append("")
            lines.append(f"| {heading} | Count | Avg Confidence |")
            lines.append("|---|---|---|")
            for r in rows:
                avg = f"{r.average_confidence:.1f}" if r.average_confidence is not None else "N/A"
                lines.append(f"| {r.key} | {r.count:,} | {avg} |")
            lines.append("")

        if self.by_flag:
            lines.append("## Quality Flags")
            lines.append("")
            lines.append("| Flag | Count |")
            lines.append("|---|---|")
            for r in self.by_flag:
                lines.append(f"| {r.key} | {r.count:,} |")
            lines.append("")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        def rows(items):
            return [
                {"key": r.key, "count": r.count, "average_confidence": r.average_confidence}
                for r in items
            ]

        return {
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "summary": {
                "total_correlations": self.total_correlations,
                "trips_correlated": self.trips_correlated,
                "deliveries_correlated": self.deliveries_correlated,
                "average_confidence": self.average_confidence,
                "review_backlog": self.review_backlog,
                "verified": self.verified,
                "uncorrelated_trips": self.uncorrelated_trips,
                "uncorrelated_deliveries": self.uncorrelated_deliveries,
            },
            "by_label": rows(self.by_label),
            "by_flag": rows(self.by_flag),
            "by_terminal": rows(self.by_terminal),
            "by_carrier": rows(self.by_carrier),
        }

    def print_summary(self):
        """Print summary to console."""
        print(f"\n{'='*60}")
        print(f"CORRELATION QUALITY: {self.start_date} to {self.end_date}")
        print(f"{'='*60}")
        print(f"Correlations:          {self.total_correlations:,}")
        print(f"Trips correlated:      {self.trips_correlated:,}")
        print(f"Deliveries correlated: {self.deliveries_correlated:,}")
        if self.average_confidence is not None:
            print(f"Average confidence:    {self.average_confidence:.1f}")
        print(f"Review backlog:        {self.review_backlog:,} ({self.review_rate:.1f}%)")
        print(f"Verified:              {self.verified:,}")
        print()
        for r in self.by_label:
            print(f"  {r.key:<12} {r.count:>8,}")
        print()
        print(f"Trips without correlation:      {self.uncorrelated_trips:,}")
        print(f"Deliveries without correlation: {self.uncorrelated_deliveries:,}")
        print(f"{'='*60}\n")
