"""Daily metrics collector.

Computes every catalog category for one date and upserts the results,
recording the run in metric_collection_log.
"""
import logging
import sqlite3
from datetime import date, datetime
from time import monotonic
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from ..schemas.metrics import CollectionResult, RunStatus
from .config import redact_text
from .definitions import DEFAULT_CATEGORIES, MetricCategory
from .locks import CollectionLock
from .schema import (
    complete_collection_run,
    fail_collection_run,
    start_collection_run,
    upsert_metric,
)
from .sources import SourceCounter


logger = logging.getLogger(__name__)


def today_in(tzinfo: ZoneInfo) -> date:
    return datetime.now(tzinfo).date()


class DailyMetricsCollector:
    """Collects all metric categories for a single date."""

    def __init__(
        self,
        db_conn: sqlite3.Connection,
        source: SourceCounter,
        categories: Sequence[MetricCategory] = DEFAULT_CATEGORIES,
        lock: Optional[CollectionLock] = None,
        tzinfo: Optional[ZoneInfo] = None,
        secrets: Sequence[Optional[str]] = (),
    ) -> None:
        """Initialize collector.

        Args:
            db_conn: Metrics database connection
            source: Counter for source records
            categories: Categories to collect
            lock: Per-date lock (no-op lock when omitted)
            tzinfo: Timezone used to resolve "today"
            secrets: Values redacted from logged errors
        """
        self.db_conn = db_conn
        self.source = source
        self.categories = tuple(categories)
        self.lock = lock or CollectionLock()
        self.tzinfo = tzinfo or ZoneInfo("UTC")
        self.secrets = list(secrets)

    async def collect(self, target_date: Optional[date] = None) -> CollectionResult:
        """Collect metrics for a single date.

        Re-collecting a date recomputes every value from current source
        data and overwrites the stored rows.

        Args:
            target_date: Date to collect (defaults to today)

        Returns:
            CollectionResult for the completed run

        Raises:
            Exception: Any failure, after the run is recorded as failed
        """
        if target_date is None:
            target_date = today_in(self.tzinfo)

        date_str = target_date.isoformat()
        start = monotonic()
        run_id = start_collection_run(self.db_conn, date_str)
        metrics_written = 0

        logger.debug("Started collection run %s for %s", run_id, date_str)

        try:
            async with self.lock.hold(target_date):
                for category in self.categories:
                    value = await self.source.count_records(
                        category.source, target_date, category.scope
                    )
                    upsert_metric(
                        self.db_conn,
                        date_str,
                        category.name,
                        value,
                        metric_type=category.metric_type,
                        metadata={
                            "scope": category.scope.value,
                            "source": category.source,
                        },
                    )
                    metrics_written += 1

            complete_collection_run(self.db_conn, run_id, metrics_written)

        except Exception as exc:
            message = redact_text(str(exc), self.secrets)
            logger.error(
                "Metric collection failed for %s: %s",
                date_str,
                message,
                exc_info=True,
            )
            try:
                fail_collection_run(
                    self.db_conn,
                    run_id,
                    message,
                    details={
                        "type": type(exc).__name__,
                        "metrics_written": metrics_written,
                    },
                )
            except Exception as record_exc:
                logger.error(
                    "Failed to record collection failure for %s: %s",
                    date_str,
                    redact_text(str(record_exc), self.secrets),
                )
            raise

        elapsed_ms = int((monotonic() - start) * 1000)
        logger.info(
            "Collected %s metrics for %s in %sms", metrics_written, date_str, elapsed_ms
        )

        return CollectionResult(
            target_date=target_date,
            run_id=run_id,
            metrics_written=metrics_written,
            elapsed_ms=elapsed_ms,
            status=RunStatus.COMPLETED,
        )


async def collect_daily_metrics(
    db_conn: sqlite3.Connection,
    source: SourceCounter,
    target_date: Optional[date] = None,
) -> CollectionResult:
    """Collect metrics for one date with default categories and no lock."""
    collector = DailyMetricsCollector(db_conn, source)
    return await collector.collect(target_date)
