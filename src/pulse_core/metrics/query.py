"""Read-only accessors over daily_metrics and metric_collection_log.

Used by dashboards; never writes.
"""
import json
import logging
import sqlite3
from datetime import date, datetime, timedelta
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from ..schemas.metrics import (
    ActivityDataPoint,
    CollectionRun,
    CollectionStatus,
    CurrentMetrics,
    MetricDefinition,
    MetricRecord,
    RunStatus,
)
from .collector import today_in
from .definitions import COMMENTS_CREATED, COMMENTS_TOTAL, POSTS_CREATED, POSTS_TOTAL, USERS_TOTAL
from .schema import utc_now


logger = logging.getLogger(__name__)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _parse_json(value: Optional[str]) -> Optional[dict]:
    if not value:
        return None
    return json.loads(value)


def _row_to_run(row: sqlite3.Row) -> CollectionRun:
    return CollectionRun(
        id=row["id"],
        target_date=date.fromisoformat(row["target_date"]),
        started_at=_parse_timestamp(row["started_at"]),
        completed_at=_parse_timestamp(row["completed_at"]),
        status=RunStatus(row["status"]),
        metrics_written=row["metrics_written"],
        error_message=row["error_message"],
        error_details=_parse_json(row["error_details"]),
    )


class MetricsQueryService:
    """Read API for collected metrics."""

    def __init__(
        self, db_conn: sqlite3.Connection, tzinfo: Optional[ZoneInfo] = None
    ) -> None:
        """Initialize query service.

        Args:
            db_conn: Metrics database connection (row_factory must be sqlite3.Row)
            tzinfo: Timezone that defines "today" for default end dates
        """
        self.db_conn = db_conn
        self.tzinfo = tzinfo or ZoneInfo("UTC")

    def fetch_metrics(
        self,
        start_date: date,
        end_date: date,
        categories: Optional[Sequence[str]] = None,
        types: Optional[Sequence[str]] = None,
    ) -> list[MetricRecord]:
        """Fetch metrics for a date range with optional filtering.

        Args:
            start_date: First date (inclusive)
            end_date: Last date (inclusive)
            categories: Only these categories, if given
            types: Only these metric types, if given

        Returns:
            Metrics ordered by date, then category
        """
        query = """
        SELECT metric_date, category, metric_type, value, metadata, written_at
        FROM daily_metrics
        WHERE metric_date >= ? AND metric_date <= ?
        """
        params: list = [start_date.isoformat(), end_date.isoformat()]

        if categories:
            query += f" AND category IN ({','.join('?' * len(categories))})"
            params.extend(categories)

        if types:
            query += f" AND metric_type IN ({','.join('?' * len(types))})"
            params.extend(types)

        query += " ORDER BY metric_date ASC, category ASC"

        rows = self.db_conn.execute(query, params).fetchall()

        return [
            MetricRecord(
                metric_date=date.fromisoformat(row["metric_date"]),
                category=row["category"],
                metric_type=row["metric_type"],
                value=row["value"],
                metadata=_parse_json(row["metadata"]) or {},
                written_at=_parse_timestamp(row["written_at"]),
            )
            for row in rows
        ]

    def fetch_current_metrics(self) -> CurrentMetrics:
        """Fetch the latest value of each cumulative total."""
        totals = (USERS_TOTAL.name, POSTS_TOTAL.name, COMMENTS_TOTAL.name)

        rows = self.db_conn.execute(
            """
            SELECT m.category, m.value, m.metric_date
            FROM daily_metrics m
            JOIN (
                SELECT category, MAX(metric_date) AS latest_date
                FROM daily_metrics
                WHERE category IN (?, ?, ?)
                GROUP BY category
            ) latest
                ON m.category = latest.category
                AND m.metric_date = latest.latest_date
            """,
            totals,
        ).fetchall()

        if not rows:
            logger.warning("No current metrics found, returning defaults")
            return CurrentMetrics()

        latest = {row["category"]: row["value"] for row in rows}
        as_of = max(date.fromisoformat(row["metric_date"]) for row in rows)

        return CurrentMetrics(
            total_users=latest.get(USERS_TOTAL.name, 0),
            total_posts=latest.get(POSTS_TOTAL.name, 0),
            total_comments=latest.get(COMMENTS_TOTAL.name, 0),
            as_of=as_of,
        )

    def fetch_activity_data(
        self, days: int = 30, end_date: Optional[date] = None
    ) -> list[ActivityDataPoint]:
        """Fetch a zero-filled daily activity series.

        Args:
            days: Number of points in the series
            end_date: Last date in the series (defaults to today in the configured timezone)

        Returns:
            Exactly `days` points in ascending date order
        """
        if days <= 0:
            raise ValueError("days must be positive")

        end_date = end_date or today_in(self.tzinfo)
        start_date = end_date - timedelta(days=days - 1)

        series = {
            start_date + timedelta(days=offset): ActivityDataPoint(
                date=start_date + timedelta(days=offset)
            )
            for offset in range(days)
        }

        rows = self.db_conn.execute(
            """
            SELECT metric_date, category, value
            FROM daily_metrics
            WHERE category IN (?, ?)
              AND metric_date >= ? AND metric_date <= ?
            """,
            (
                POSTS_CREATED.name,
                COMMENTS_CREATED.name,
                start_date.isoformat(),
                end_date.isoformat(),
            ),
        ).fetchall()

        for row in rows:
            point = series[date.fromisoformat(row["metric_date"])]
            if row["category"] == POSTS_CREATED.name:
                point.posts = row["value"]
            else:
                point.comments = row["value"]

        return [series[key] for key in sorted(series)]

    def get_collection_status(
        self, now: Optional[datetime] = None
    ) -> Optional[CollectionStatus]:
        """Summarize the most recent collection run.

        Returns:
            CollectionStatus, or None if no run has been recorded
        """
        row = self.db_conn.execute(
            """
            SELECT * FROM metric_collection_log
            ORDER BY started_at DESC, id DESC
            LIMIT 1
            """
        ).fetchone()

        if row is None:
            logger.warning("No collection log entries found")
            return None

        run = _row_to_run(row)

        if run.completed_at is not None:
            duration = run.completed_at - run.started_at
        elif run.status == RunStatus.RUNNING:
            duration = (now or utc_now()) - run.started_at
        else:
            duration = timedelta(0)

        return CollectionStatus(
            last_run=run.started_at,
            target_date=run.target_date,
            status=run.status,
            metrics_written=run.metrics_written,
            duration_ms=int(duration.total_seconds() * 1000),
            error_message=run.error_message,
        )

    def list_collection_runs(self, limit: int = 20) -> list[CollectionRun]:
        """List recent collection runs, newest first."""
        rows = self.db_conn.execute(
            """
            SELECT * FROM metric_collection_log
            ORDER BY started_at DESC, id DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
        return [_row_to_run(row) for row in rows]

    def list_definitions(self, active_only: bool = True) -> list[MetricDefinition]:
        """List metric definitions for display."""
        query = """
        SELECT metric_type, category, display_name, description,
               unit, format_pattern, is_active
        FROM metric_definitions
        """
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY id"

        return [
            MetricDefinition(
                metric_type=row["metric_type"],
                category=row["category"],
                display_name=row["display_name"],
                description=row["description"],
                unit=row["unit"],
                format_pattern=row["format_pattern"],
                is_active=bool(row["is_active"]),
            )
            for row in self.db_conn.execute(query).fetchall()
        ]
