"""SQLite schema definitions for daily metrics collection.

Database: data/metrics.db (WAL mode)
Tables: daily_metrics, metric_definitions, metric_collection_log
"""
import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from .definitions import DEFAULT_CATEGORIES, MetricCategory


logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1

RUN_STATUS_RUNNING = "running"
RUN_STATUS_COMPLETED = "completed"
RUN_STATUS_FAILED = "failed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Serialize a timestamp as fixed-width UTC ISO-8601 text.

    Fixed width keeps lexical order equal to chronological order.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open a metrics database connection with WAL and row access by name."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_database(db: str | Path | sqlite3.Connection) -> None:
    """Initialize metrics database with schema.

    Creates tables if they don't exist and seeds metric definitions.
    Enables WAL mode for concurrent reads.

    Args:
        db: Path to SQLite database file, or an open connection
    """
    if isinstance(db, sqlite3.Connection):
        conn = db
        owns_connection = False
    else:
        db_path = Path(db)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path)
        conn.execute("PRAGMA journal_mode=WAL")
        owns_connection = True

    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        current_version = cursor.fetchone()[0] or 0

        if current_version < SCHEMA_VERSION:
            _apply_schema(conn)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            logger.info("Database schema initialized (version %s)", SCHEMA_VERSION)
        else:
            logger.debug("Database schema up to date (version %s)", current_version)

        seed_metric_definitions(conn, DEFAULT_CATEGORIES)
        conn.commit()

    finally:
        if owns_connection:
            conn.close()


def _apply_schema(conn: sqlite3.Connection) -> None:
    """Apply database schema.

    Args:
        conn: SQLite connection (in transaction)
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS daily_metrics (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            metric_date TEXT NOT NULL,
            category TEXT NOT NULL,
            metric_type TEXT NOT NULL DEFAULT 'count',
            value REAL NOT NULL,
            metadata TEXT NOT NULL DEFAULT '{}',
            written_at TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(metric_date, category)
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_daily_metrics_date_type
        ON daily_metrics(metric_date DESC, metric_type, category)
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_daily_metrics_category
        ON daily_metrics(category, metric_date DESC)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS metric_definitions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            metric_type TEXT NOT NULL,
            category TEXT NOT NULL,
            display_name TEXT NOT NULL,
            description TEXT,
            unit TEXT,
            format_pattern TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(metric_type, category)
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS metric_collection_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            target_date TEXT NOT NULL,
            started_at TEXT NOT NULL,
            completed_at TEXT,
            status TEXT NOT NULL
                CHECK (status IN ('running', 'completed', 'failed')),
            metrics_written INTEGER NOT NULL DEFAULT 0,
            error_message TEXT,
            error_details TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_collection_log_date
        ON metric_collection_log(target_date DESC)
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_collection_log_status
        ON metric_collection_log(status, started_at DESC)
        """
    )


def seed_metric_definitions(
    conn: sqlite3.Connection, categories: Iterable[MetricCategory]
) -> None:
    """Upsert display metadata for each category.

    Args:
        conn: SQLite connection (caller commits)
        categories: Categories to describe
    """
    for category in categories:
        conn.execute(
            """
            INSERT INTO metric_definitions (
                metric_type, category, display_name, description,
                unit, format_pattern, is_active
            )
            VALUES (?, ?, ?, ?, ?, ?, 1)
            ON CONFLICT(metric_type, category)
            DO UPDATE SET
                display_name=excluded.display_name,
                description=excluded.description,
                unit=excluded.unit,
                format_pattern=excluded.format_pattern,
                is_active=excluded.is_active
            """,
            (
                category.metric_type,
                category.name,
                category.display_name,
                category.description,
                category.unit,
                category.format_pattern,
            ),
        )


def upsert_metric(
    conn: sqlite3.Connection,
    metric_date: str,
    category: str,
    value: float,
    metric_type: str = "count",
    metadata: Optional[dict[str, Any]] = None,
    written_at: Optional[datetime] = None,
) -> None:
    """Insert or overwrite one (date, category) metric row.

    Args:
        conn: SQLite connection
        metric_date: YYYY-MM-DD format
        category: Metric category name
        value: Metric value
        metric_type: Metric type ('count')
        metadata: Optional annotations stored as JSON
        written_at: Write timestamp (defaults to now)
    """
    conn.execute(
        """
        INSERT INTO daily_metrics (
            metric_date, category, metric_type, value, metadata, written_at
        )
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(metric_date, category)
        DO UPDATE SET
            metric_type=excluded.metric_type,
            value=excluded.value,
            metadata=excluded.metadata,
            written_at=excluded.written_at
        """,
        (
            metric_date,
            category,
            metric_type,
            value,
            json.dumps(metadata or {}, separators=(",", ":"), sort_keys=True),
            format_timestamp(written_at or utc_now()),
        ),
    )
    conn.commit()


def start_collection_run(
    conn: sqlite3.Connection,
    target_date: str,
    started_at: Optional[datetime] = None,
) -> int:
    """Record the start of a collection run.

    Args:
        conn: SQLite connection
        target_date: YYYY-MM-DD format
        started_at: Start timestamp (defaults to now)

    Returns:
        Run ID
    """
    cursor = conn.execute(
        """
        INSERT INTO metric_collection_log (target_date, started_at, status)
        VALUES (?, ?, 'running')
        """,
        (target_date, format_timestamp(started_at or utc_now())),
    )
    conn.commit()
    return cursor.lastrowid


def complete_collection_run(
    conn: sqlite3.Connection,
    run_id: int,
    metrics_written: int,
    completed_at: Optional[datetime] = None,
) -> None:
    """Mark a running collection run as completed.

    Args:
        conn: SQLite connection
        run_id: Run ID from start_collection_run
        metrics_written: Number of metric rows written
        completed_at: Completion timestamp (defaults to now)
    """
    cursor = conn.execute(
        """
        UPDATE metric_collection_log
        SET status='completed',
            metrics_written=?,
            completed_at=?
        WHERE id=? AND status='running'
        """,
        (metrics_written, format_timestamp(completed_at or utc_now()), run_id),
    )
    conn.commit()

    if cursor.rowcount == 0:
        logger.warning("Collection run %s was not running; completion ignored", run_id)


def fail_collection_run(
    conn: sqlite3.Connection,
    run_id: int,
    error: str,
    details: Optional[dict[str, Any]] = None,
    completed_at: Optional[datetime] = None,
) -> None:
    """Mark a running collection run as failed.

    Args:
        conn: SQLite connection
        run_id: Run ID from start_collection_run
        error: Error message
        details: Optional structured error context stored as JSON
        completed_at: Failure timestamp (defaults to now)
    """
    metrics_written = (details or {}).get("metrics_written", 0)

    cursor = conn.execute(
        """
        UPDATE metric_collection_log
        SET status='failed',
            metrics_written=?,
            error_message=?,
            error_details=?,
            completed_at=?
        WHERE id=? AND status='running'
        """,
        (
            metrics_written,
            error,
            json.dumps(details, separators=(",", ":")) if details else None,
            format_timestamp(completed_at or utc_now()),
            run_id,
        ),
    )
    conn.commit()

    if cursor.rowcount == 0:
        logger.warning("Collection run %s was not running; failure ignored", run_id)


def should_collect(conn: sqlite3.Connection, metric_date: str) -> bool:
    """Check if collection should run for this date.

    Args:
        conn: SQLite connection
        metric_date: YYYY-MM-DD format

    Returns:
        True if no completed collection run exists for this date
    """
    cursor = conn.execute(
        """
        SELECT 1 FROM metric_collection_log
        WHERE target_date=? AND status='completed'
        LIMIT 1
        """,
        (metric_date,),
    )

    if cursor.fetchone() is None:
        return True

    logger.debug("Skipping already collected: %s", metric_date)
    return False


def sweep_stale_runs(
    conn: sqlite3.Connection,
    older_than: timedelta,
    now: Optional[datetime] = None,
) -> int:
    """Fail runs stuck in 'running' longer than the threshold.

    A terminated process leaves its run row in 'running'; this closes them.

    Args:
        conn: SQLite connection
        older_than: Age after which a running row counts as abandoned
        now: Reference time (defaults to now)

    Returns:
        Number of runs marked failed
    """
    now = now or utc_now()
    cutoff = format_timestamp(now - older_than)
    minutes = int(older_than.total_seconds() // 60)

    cursor = conn.execute(
        """
        UPDATE metric_collection_log
        SET status='failed',
            error_message=?,
            completed_at=?
        WHERE status='running' AND started_at < ?
        """,
        (
            f"Abandoned: still running after {minutes} minutes",
            format_timestamp(now),
            cutoff,
        ),
    )
    conn.commit()

    swept = cursor.rowcount
    if swept:
        logger.warning("Marked %s stale collection runs as failed", swept)
    return swept
