"""Metrics collection service orchestrator.

One interface for every trigger: the daily cron run, manual single-date
collection and manual range backfills.
"""
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import AsyncIterator, Optional

import aiohttp
from redis.asyncio import Redis

from ..schemas.metrics import BackfillResult, CollectionResult
from .backfill import RangeBackfiller, validate_range
from .collector import DailyMetricsCollector, today_in
from .config import SOURCE_BACKEND_SUPABASE, MetricsConfig
from .definitions import ACTIVITY_SOURCES
from .locks import CollectionLock
from .schema import connect, init_database, should_collect, sweep_stale_runs
from .sources import SourceCounter, SqliteSourceCounter, SupabaseSourceCounter


logger = logging.getLogger(__name__)


def sweep_stale_collection_runs(config: MetricsConfig) -> int:
    """Fail abandoned runs in the metrics store.

    Only touches config.db_path, so it works without a reachable source.
    """
    init_database(config.db_path)
    db_conn = connect(config.db_path)
    try:
        return sweep_stale_runs(db_conn, timedelta(minutes=config.stale_run_minutes))
    finally:
        db_conn.close()


class MetricsCollectorService:
    """Orchestrates daily metrics collection and backfills."""

    def __init__(
        self,
        config: MetricsConfig,
        source: Optional[SourceCounter] = None,
        redis: Optional[Redis] = None,
    ) -> None:
        """Initialize collector service.

        Args:
            config: Explicit configuration
            source: Injected source counter (built from config when omitted)
            redis: Injected Redis client for per-date locks (built from
                config.redis_url when omitted)

        Raises:
            ConfigurationError: If no source is injected and the config
                cannot reach one
        """
        if source is None:
            config.validate()

        self.config = config
        self._source = source
        self._redis = redis
        self._tzinfo = config.tzinfo

        init_database(config.db_path)

        logger.info("MetricsCollectorService initialized")
        logger.info("Database: %s", config.db_path)
        logger.info("Source backend: %s", config.source_backend)

    def today(self) -> date:
        return today_in(self._tzinfo)

    @asynccontextmanager
    async def _source_counter(self) -> AsyncIterator[SourceCounter]:
        if self._source is not None:
            yield self._source
            return

        if self.config.source_backend == SOURCE_BACKEND_SUPABASE:
            timeout = aiohttp.ClientTimeout(total=60, connect=15)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                yield SupabaseSourceCounter(
                    base_url=self.config.supabase_url,
                    service_role_key=self.config.supabase_service_role_key,
                    session=session,
                    source_tables=self.config.source_tables,
                )
            return

        source_conn = sqlite3.connect(self.config.source_db_path)
        try:
            yield SqliteSourceCounter(source_conn, self.config.source_tables)
        finally:
            source_conn.close()

    @asynccontextmanager
    async def _redis_client(self) -> AsyncIterator[Optional[Redis]]:
        if self._redis is not None or not self.config.redis_url:
            yield self._redis
            return

        redis = Redis.from_url(self.config.redis_url, decode_responses=False)
        try:
            yield redis
        finally:
            await redis.aclose()

    @asynccontextmanager
    async def _collector(self) -> AsyncIterator[DailyMetricsCollector]:
        db_conn = connect(self.config.db_path)
        try:
            async with self._source_counter() as source, self._redis_client() as redis:
                yield DailyMetricsCollector(
                    db_conn,
                    source,
                    lock=CollectionLock(redis),
                    tzinfo=self._tzinfo,
                    secrets=self.config.secrets,
                )
        finally:
            db_conn.close()

    async def run_once(self, target_date: Optional[date] = None) -> CollectionResult:
        """Run collection for a single date.

        Args:
            target_date: Date to collect (defaults to today)

        Raises:
            Exception: The collection failure, after it is recorded
        """
        target_date = target_date or self.today()
        logger.info("Starting collection for %s", target_date.isoformat())

        async with self._collector() as collector:
            return await collector.collect(target_date)

    async def resolve_start_date(self) -> date:
        """Earliest post/comment date, or default_backfill_days ago if none."""
        async with self._source_counter() as source:
            earliest = await source.earliest_record_date(ACTIVITY_SOURCES)

        if earliest is None:
            fallback = self.today() - timedelta(days=self.config.default_backfill_days)
            logger.warning(
                "No posts or comments found, using default start date (%s days ago)",
                self.config.default_backfill_days,
            )
            return fallback

        logger.info("Earliest date found: %s", earliest.isoformat())
        return earliest

    async def run_backfill(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> BackfillResult:
        """Backfill an inclusive range.

        Args:
            start_date: First date (defaults to earliest source activity)
            end_date: Last date (defaults to today)

        Raises:
            DateRangeError: If start_date is after end_date
        """
        end_date = end_date or self.today()
        if start_date is None:
            start_date = await self.resolve_start_date()

        validate_range(start_date, end_date)

        async with self._collector() as collector:
            backfiller = RangeBackfiller(collector, self.config.progress_every)
            return await backfiller.backfill(start_date, end_date)

    def sweep_stale_runs(self) -> int:
        """Fail runs left in 'running' by a terminated process."""
        return sweep_stale_collection_runs(self.config)

    def missing_dates(self) -> list[date]:
        """Recent dates (before today) without a completed run."""
        db_conn = connect(self.config.db_path)
        try:
            today = self.today()
            return [
                today - timedelta(days=days_ago)
                for days_ago in range(self.config.catchup_days, 0, -1)
                if should_collect(db_conn, (today - timedelta(days=days_ago)).isoformat())
            ]
        finally:
            db_conn.close()

    async def run_scheduled(self) -> BackfillResult:
        """Daily trigger: sweep stale runs, catch up missed days, collect today.

        Catch-up only covers dates with no completed run, so a routine
        scheduled run never rewrites an already collected day.
        """
        self.sweep_stale_runs()

        dates = self.missing_dates()
        for target_date in dates:
            logger.info("Backfilling %s", target_date.isoformat())
        dates.append(self.today())

        async with self._collector() as collector:
            backfiller = RangeBackfiller(collector, self.config.progress_every)
            return await backfiller.collect_dates(dates)
