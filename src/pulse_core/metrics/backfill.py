"""Range backfiller: runs the daily collector over an inclusive date range."""
import logging
import sqlite3
from datetime import date, timedelta
from time import monotonic
from typing import Iterator, Sequence

from ..schemas.metrics import BackfillResult, BackfillStatus
from .collector import DailyMetricsCollector
from .config import redact_text
from .exceptions import DateRangeError
from .sources import SourceCounter


logger = logging.getLogger(__name__)


def iter_dates(start_date: date, end_date: date) -> Iterator[date]:
    """Yield each date from start_date to end_date inclusive."""
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def validate_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise DateRangeError(
            f"start_date ({start_date.isoformat()}) cannot be after "
            f"end_date ({end_date.isoformat()})",
            start_date=start_date,
            end_date=end_date,
        )


class RangeBackfiller:
    """Best-effort sequential backfill over a date range.

    A failed date is logged and counted; the loop moves on. Nothing is
    retried and successful dates are never rolled back.
    """

    def __init__(self, collector: DailyMetricsCollector, progress_every: int = 10) -> None:
        self.collector = collector
        self.progress_every = max(1, progress_every)

    async def backfill(self, start_date: date, end_date: date) -> BackfillResult:
        """Collect every date in [start_date, end_date].

        Raises:
            DateRangeError: If start_date is after end_date
        """
        validate_range(start_date, end_date)

        logger.info(
            "Starting backfill from %s to %s",
            start_date.isoformat(),
            end_date.isoformat(),
        )

        return await self._collect_each(
            list(iter_dates(start_date, end_date)), start_date, end_date
        )

    async def collect_dates(self, dates: Sequence[date]) -> BackfillResult:
        """Collect an arbitrary set of dates in ascending order.

        Raises:
            DateRangeError: If dates is empty
        """
        if not dates:
            raise DateRangeError("No dates to collect")

        ordered = sorted(set(dates))
        logger.info(
            "Collecting %s dates between %s and %s",
            len(ordered),
            ordered[0].isoformat(),
            ordered[-1].isoformat(),
        )
        return await self._collect_each(ordered, ordered[0], ordered[-1])

    async def _collect_each(
        self, dates: Sequence[date], start_date: date, end_date: date
    ) -> BackfillResult:
        start = monotonic()
        dates_processed = 0
        total_metrics = 0
        failed_dates: list[date] = []

        for processing_date in dates:
            dates_processed += 1
            try:
                result = await self.collector.collect(processing_date)
            except Exception as exc:
                failed_dates.append(processing_date)
                logger.warning(
                    "Error processing date %s: %s",
                    processing_date.isoformat(),
                    redact_text(str(exc), self.collector.secrets),
                )
            else:
                total_metrics += result.metrics_written
                logger.debug(
                    "Processed date: %s, Metrics: %s, Status: %s",
                    processing_date.isoformat(),
                    result.metrics_written,
                    result.status.value,
                )

            if dates_processed % self.progress_every == 0:
                logger.info(
                    "Progress: Processed %s dates, %s total metrics collected",
                    dates_processed,
                    total_metrics,
                )

        if not failed_dates:
            status = BackfillStatus.COMPLETED
        elif len(failed_dates) < dates_processed:
            status = BackfillStatus.COMPLETED_WITH_ERRORS
        else:
            status = BackfillStatus.FAILED

        elapsed_ms = int((monotonic() - start) * 1000)

        logger.info(
            "Backfill completed: %s dates processed, %s total metrics, %s errors",
            dates_processed,
            total_metrics,
            len(failed_dates),
        )

        return BackfillResult(
            start_date=start_date,
            end_date=end_date,
            dates_processed=dates_processed,
            dates_failed=len(failed_dates),
            failed_dates=failed_dates,
            total_metrics=total_metrics,
            elapsed_ms=elapsed_ms,
            status=status,
        )


async def backfill_daily_metrics(
    db_conn: sqlite3.Connection,
    source: SourceCounter,
    start_date: date,
    end_date: date,
) -> BackfillResult:
    """Backfill a range with default categories and no lock."""
    backfiller = RangeBackfiller(DailyMetricsCollector(db_conn, source))
    return await backfiller.backfill(start_date, end_date)
