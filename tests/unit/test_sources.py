"""Unit tests for source-record counters (SQLite and mocked Supabase)."""
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.pulse_core.metrics.definitions import MetricScope
from src.pulse_core.metrics.exceptions import SourceQueryError
from src.pulse_core.metrics.sources import (
    SqliteSourceCounter,
    SupabaseSourceCounter,
    normalize_timestamp,
)


SOURCE_TABLES = {"users": "profiles", "posts": "posts", "comments": "comments"}


@pytest.mark.asyncio
async def test_sqlite_cumulative_and_daily_counts(source, seed):
    """Cumulative counts include earlier days; daily counts only the date."""
    seed("profiles", ["2024-01-01T08:00:00"] * 3)
    seed("profiles", ["2024-01-02T23:59:59", "2024-01-02T00:00:00"])
    seed("profiles", ["2024-01-03T12:00:00"])

    target = date(2024, 1, 2)

    assert await source.count_records("users", target, MetricScope.CUMULATIVE) == 5
    assert await source.count_records("users", target, MetricScope.DAILY) == 2


@pytest.mark.asyncio
async def test_sqlite_counts_zero_for_empty_tables(source):
    """Empty tables count as zero, not an error."""
    assert await source.count_records("comments", date(2024, 1, 1), MetricScope.CUMULATIVE) == 0


@pytest.mark.asyncio
async def test_sqlite_earliest_record_date(source, seed):
    """Earliest date is the minimum across the requested sources."""
    seed("posts", ["2024-02-10T10:00:00", "2024-02-03T10:00:00"])
    seed("comments", ["2024-02-05T10:00:00"])
    seed("profiles", ["2023-12-01T10:00:00"])

    assert await source.earliest_record_date(["posts", "comments"]) == date(2024, 2, 3)


@pytest.mark.asyncio
async def test_sqlite_earliest_record_date_none_without_data(source):
    assert await source.earliest_record_date(["posts", "comments"]) is None


@pytest.mark.asyncio
async def test_sqlite_counts_postgres_style_timestamps(source, seed):
    """Offsets written as +HH or +HHMM are counted by their UTC date."""
    seed(
        "profiles",
        [
            "2024-01-02 10:00:00.123456+00",
            "2024-01-02T10:00:00+00:00",
            "2024-01-03 02:00:00+0500",
            "2024-01-01 23:30:00-03",
        ],
    )

    target = date(2024, 1, 2)

    assert await source.count_records("users", target, MetricScope.CUMULATIVE) == 4
    assert await source.count_records("users", target, MetricScope.DAILY) == 4
    assert await source.earliest_record_date(["users"]) == target


@pytest.mark.asyncio
async def test_sqlite_unparseable_created_at_fails_count(source, seed):
    """A row that cannot be dated fails the count instead of being skipped."""
    seed("posts", ["2024-01-02T10:00:00", "yesterday afternoon"])

    with pytest.raises(SourceQueryError) as exc_info:
        await source.count_records("posts", date(2024, 1, 2), MetricScope.CUMULATIVE)

    assert "1 rows have an unparseable created_at" in str(exc_info.value)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("2024-01-02 10:00:00.123456+00", "2024-01-02 10:00:00.123456+00:00"),
        ("2024-01-02 10:00:00+0530", "2024-01-02 10:00:00+05:30"),
        ("2024-01-02T10:00:00-05:00", "2024-01-02T10:00:00-05:00"),
        ("2024-01-02T10:00:00Z", "2024-01-02T10:00:00Z"),
        ("2024-01-02", "2024-01-02"),
        (None, None),
    ],
)
def test_normalize_timestamp(raw, expected):
    assert normalize_timestamp(raw) == expected


@pytest.mark.asyncio
async def test_unknown_source_raises(source):
    with pytest.raises(SourceQueryError):
        await source.count_records("likes", date(2024, 1, 1), MetricScope.DAILY)


def test_invalid_table_name_rejected(source_conn):
    """Table names are interpolated into SQL, so they must be identifiers."""
    with pytest.raises(ValueError):
        SqliteSourceCounter(source_conn, {"users": "profiles; DROP TABLE posts"})


def _mock_response(status=200, headers=None, json_data=None, text=""):
    response = AsyncMock()
    response.status = status
    response.headers = headers or {}
    response.json.return_value = json_data
    response.text.return_value = text
    response.__aenter__.return_value = response
    return response


@pytest.fixture
def mock_session():
    """Mock aiohttp ClientSession."""
    return MagicMock()


@pytest.fixture
def supabase_counter(mock_session):
    return SupabaseSourceCounter(
        base_url="https://example.supabase.co/",
        service_role_key="service_secret_key",
        session=mock_session,
        source_tables=SOURCE_TABLES,
    )


@pytest.mark.asyncio
async def test_supabase_daily_count_reads_content_range(supabase_counter, mock_session):
    """Daily scope filters on [date, next day) and parses the exact count."""
    mock_session.get.return_value = _mock_response(
        status=206, headers={"Content-Range": "0-0/42"}
    )

    count = await supabase_counter.count_records(
        "posts", date(2024, 1, 2), MetricScope.DAILY
    )

    assert count == 42
    args, kwargs = mock_session.get.call_args
    assert args[0] == "https://example.supabase.co/rest/v1/posts"
    assert ("created_at", "gte.2024-01-02") in kwargs["params"]
    assert ("created_at", "lt.2024-01-03") in kwargs["params"]
    assert kwargs["headers"]["Prefer"] == "count=exact"
    assert kwargs["headers"]["Authorization"] == "Bearer service_secret_key"


@pytest.mark.asyncio
async def test_supabase_cumulative_count_has_upper_bound_only(supabase_counter, mock_session):
    mock_session.get.return_value = _mock_response(headers={"Content-Range": "*/0"})

    count = await supabase_counter.count_records(
        "users", date(2024, 1, 2), MetricScope.CUMULATIVE
    )

    assert count == 0
    params = mock_session.get.call_args.kwargs["params"]
    assert ("created_at", "lt.2024-01-03") in params
    assert not any(value.startswith("gte.") for key, value in params if key == "created_at")
    assert mock_session.get.call_args.args[0].endswith("/rest/v1/profiles")


@pytest.mark.asyncio
async def test_supabase_error_status_raises_redacted(supabase_counter, mock_session):
    """HTTP errors raise SourceQueryError without leaking the key."""
    mock_session.get.return_value = _mock_response(
        status=401, text="invalid key service_secret_key"
    )

    with pytest.raises(SourceQueryError) as exc_info:
        await supabase_counter.count_records("posts", date(2024, 1, 2), MetricScope.DAILY)

    assert exc_info.value.status == 401
    assert "service_secret_key" not in str(exc_info.value)
    assert "[REDACTED]" in str(exc_info.value)


@pytest.mark.asyncio
async def test_supabase_missing_count_raises(supabase_counter, mock_session):
    mock_session.get.return_value = _mock_response(headers={"Content-Range": "0-0/*"})

    with pytest.raises(SourceQueryError):
        await supabase_counter.count_records("posts", date(2024, 1, 2), MetricScope.DAILY)


@pytest.mark.asyncio
async def test_supabase_earliest_record_date(supabase_counter, mock_session):
    """Earliest date takes the minimum of the first row per table."""
    mock_session.get.side_effect = [
        _mock_response(json_data=[{"created_at": "2024-03-05T10:11:12.123456+00:00"}]),
        _mock_response(json_data=[{"created_at": "2024-02-28T23:00:00+00:00"}]),
    ]

    earliest = await supabase_counter.earliest_record_date(["posts", "comments"])

    assert earliest == date(2024, 2, 28)


@pytest.mark.asyncio
async def test_supabase_earliest_record_date_skips_empty_and_errors(supabase_counter, mock_session):
    mock_session.get.side_effect = [
        _mock_response(json_data=[]),
        _mock_response(status=500, text="boom"),
    ]

    assert await supabase_counter.earliest_record_date(["posts", "comments"]) is None
