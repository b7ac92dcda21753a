"""Source-record counters for the community tables (users, posts, comments).

The collector only ever reads these tables through count queries. Two
backends are supported:
- SQLite: a local copy of the community database
- Supabase: the PostgREST endpoint of the managed backend
"""
import logging
import re
import sqlite3
from abc import ABC, abstractmethod
from datetime import date, timedelta
from typing import Mapping, Optional, Sequence

import aiohttp

from .config import redact_text
from .definitions import MetricScope
from .exceptions import SourceQueryError


logger = logging.getLogger(__name__)


_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SourceCounter(ABC):
    """Counts source records created on or before a date."""

    def __init__(self, source_tables: Mapping[str, str]) -> None:
        """Initialize counter.

        Args:
            source_tables: Mapping of source name ('users', 'posts',
                'comments') to table name
        """
        for table in source_tables.values():
            if not _IDENTIFIER_RE.match(table):
                raise ValueError(f"Invalid source table name: {table!r}")
        self.source_tables = dict(source_tables)

    def table_for(self, source: str) -> str:
        try:
            return self.source_tables[source]
        except KeyError:
            raise SourceQueryError(source, "no table configured for source") from None

    @abstractmethod
    async def count_records(
        self, source: str, target_date: date, scope: MetricScope
    ) -> int:
        """Count records of a source bounded by target_date.

        Cumulative scope counts created_at::date <= target_date;
        daily scope counts created_at::date = target_date.
        """

    @abstractmethod
    async def earliest_record_date(self, sources: Sequence[str]) -> Optional[date]:
        """Return the earliest created_at date across sources, or None."""


# Postgres renders offsets as +HH or +HHMM; SQLite date() only accepts +HH:MM
_PG_OFFSET_RE = re.compile(
    r"(\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)\s*([+-]\d{2}):?(\d{2})?$"
)


def normalize_timestamp(value):
    """Rewrite Postgres-style timestamp text into a form SQLite can parse.

    '2024-01-02 10:00:00.123456+00' -> '2024-01-02 10:00:00.123456+00:00'.
    Non-text values pass through unchanged.
    """
    if not isinstance(value, str):
        return value
    return _PG_OFFSET_RE.sub(
        lambda m: f"{m.group(1)}{m.group(2)}:{m.group(3) or '00'}", value.strip()
    )


class SqliteSourceCounter(SourceCounter):
    """Counts records in a local SQLite copy of the community tables.

    created_at is compared by its UTC calendar date. A row whose created_at
    cannot be parsed fails the count rather than being left out of it.
    """

    def __init__(self, db_conn: sqlite3.Connection, source_tables: Mapping[str, str]) -> None:
        super().__init__(source_tables)
        self.db_conn = db_conn
        self.db_conn.create_function(
            "pulse_timestamp", 1, normalize_timestamp, deterministic=True
        )

    async def count_records(
        self, source: str, target_date: date, scope: MetricScope
    ) -> int:
        table = self.table_for(source)
        operator = "<=" if scope == MetricScope.CUMULATIVE else "="

        cursor = self.db_conn.execute(
            f"""
            SELECT
                COALESCE(SUM(created_date {operator} ?), 0),
                COALESCE(SUM(created_date IS NULL AND created_at IS NOT NULL), 0)
            FROM (
                SELECT created_at, date(pulse_timestamp(created_at)) AS created_date
                FROM "{table}"
            )
            """,
            (target_date.isoformat(),),
        )
        count, unparseable = cursor.fetchone()

        if unparseable:
            raise SourceQueryError(
                table, f"{unparseable} rows have an unparseable created_at"
            )

        logger.debug(
            "Counted %s %s rows in %s for %s", count, scope.value, table, target_date
        )
        return int(count)

    async def earliest_record_date(self, sources: Sequence[str]) -> Optional[date]:
        earliest: Optional[date] = None

        for source in sources:
            table = self.table_for(source)
            cursor = self.db_conn.execute(
                f'SELECT MIN(date(pulse_timestamp(created_at))) FROM "{table}"'
            )
            value = cursor.fetchone()[0]
            if value is None:
                continue

            candidate = date.fromisoformat(value)
            if earliest is None or candidate < earliest:
                earliest = candidate

        return earliest


class SupabaseSourceCounter(SourceCounter):
    """Counts records through the Supabase PostgREST API.

    Uses `Prefer: count=exact` and reads the total from Content-Range.
    """

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        session: aiohttp.ClientSession,
        source_tables: Mapping[str, str],
    ) -> None:
        """Initialize Supabase counter.

        Args:
            base_url: Project URL (e.g., https://xyz.supabase.co)
            service_role_key: Service role key (never logged)
            session: Injected aiohttp ClientSession
            source_tables: Mapping of source name to table name
        """
        super().__init__(source_tables)
        self.base_url = base_url.rstrip("/")
        self._service_role_key = service_role_key
        self.session = session

    def _headers(self, count: bool = False) -> dict[str, str]:
        headers = {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
            "Accept": "application/json",
        }
        if count:
            headers["Prefer"] = "count=exact"
        return headers

    def _endpoint(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    async def count_records(
        self, source: str, target_date: date, scope: MetricScope
    ) -> int:
        table = self.table_for(source)
        next_day = (target_date + timedelta(days=1)).isoformat()

        params: list[tuple[str, str]] = [("select", "created_at"), ("limit", "1")]
        if scope == MetricScope.DAILY:
            params.append(("created_at", f"gte.{target_date.isoformat()}"))
        params.append(("created_at", f"lt.{next_day}"))

        async with self.session.get(
            self._endpoint(table), params=params, headers=self._headers(count=True)
        ) as response:
            if response.status not in (200, 206):
                body = await response.text()
                raise SourceQueryError(
                    table,
                    redact_text(body[:200], [self._service_role_key]),
                    status=response.status,
                )

            content_range = response.headers.get("Content-Range", "")

        count = self._parse_total(table, content_range)
        logger.debug(
            "Counted %s %s rows in %s for %s", count, scope.value, table, target_date
        )
        return count

    @staticmethod
    def _parse_total(table: str, content_range: str) -> int:
        """Extract total from a Content-Range header like '0-0/42' or '*/0'."""
        _, _, total = content_range.rpartition("/")
        try:
            return int(total)
        except ValueError:
            raise SourceQueryError(
                table, f"missing exact count in Content-Range '{content_range}'"
            ) from None

    async def earliest_record_date(self, sources: Sequence[str]) -> Optional[date]:
        earliest: Optional[date] = None

        for source in sources:
            table = self.table_for(source)
            params = {
                "select": "created_at",
                "order": "created_at.asc",
                "limit": "1",
            }

            async with self.session.get(
                self._endpoint(table), params=params, headers=self._headers()
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.error(
                        "Error querying earliest %s (%s): %s",
                        table,
                        response.status,
                        redact_text(body[:500], [self._service_role_key]),
                    )
                    continue

                rows = await response.json()

            if not rows or not rows[0].get("created_at"):
                continue

            candidate = date.fromisoformat(rows[0]["created_at"][:10])
            if earliest is None or candidate < earliest:
                earliest = candidate

        return earliest
