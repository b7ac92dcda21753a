"""Unit tests for MetricsCollectorService orchestration."""
import sqlite3
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from src.pulse_core.metrics.config import MetricsConfig
from src.pulse_core.metrics.exceptions import ConfigurationError, DateRangeError
from src.pulse_core.metrics.schema import (
    complete_collection_run,
    connect,
    start_collection_run,
)
from src.pulse_core.metrics.service import MetricsCollectorService
from src.pulse_core.schemas.metrics import BackfillResult, BackfillStatus, RunStatus


TODAY = date(2024, 1, 10)


@pytest.fixture
def config(tmp_path):
    return MetricsConfig(db_path=tmp_path / "metrics.db", catchup_days=3)


@pytest.fixture
def service(config, source):
    with patch("src.pulse_core.metrics.service.today_in", return_value=TODAY):
        yield MetricsCollectorService(config, source=source)


def _runs(config):
    conn = connect(config.db_path)
    try:
        return [
            (row["target_date"], row["status"])
            for row in conn.execute(
                "SELECT target_date, status FROM metric_collection_log ORDER BY id"
            )
        ]
    finally:
        conn.close()


def test_init_creates_metrics_database(config, source):
    MetricsCollectorService(config, source=source)

    assert config.db_path.exists()


def test_init_validates_config_without_injected_source(tmp_path):
    config = MetricsConfig(db_path=tmp_path / "metrics.db", source_backend="supabase")

    with pytest.raises(ConfigurationError):
        MetricsCollectorService(config)


@pytest.mark.asyncio
async def test_run_once_defaults_to_today(service, config):
    result = await service.run_once()

    assert result.target_date == TODAY
    assert result.status == RunStatus.COMPLETED
    assert _runs(config) == [("2024-01-10", "completed")]


@pytest.mark.asyncio
async def test_run_backfill_explicit_range(service, config):
    result = await service.run_backfill(date(2024, 1, 1), date(2024, 1, 2))

    assert result.status == BackfillStatus.COMPLETED
    assert result.total_metrics == 10
    assert len(_runs(config)) == 2


@pytest.mark.asyncio
async def test_run_backfill_reversed_range(service):
    with pytest.raises(DateRangeError):
        await service.run_backfill(date(2024, 1, 5), date(2024, 1, 1))


@pytest.mark.asyncio
async def test_resolve_start_date_uses_earliest_activity(service, seed):
    seed("comments", ["2024-01-07T10:00:00"])
    seed("posts", ["2024-01-08T10:00:00"])

    assert await service.resolve_start_date() == date(2024, 1, 7)


@pytest.mark.asyncio
async def test_resolve_start_date_falls_back_without_activity(service):
    assert await service.resolve_start_date() == TODAY - timedelta(days=30)


@pytest.mark.asyncio
async def test_run_backfill_default_start(service, config, seed):
    seed("posts", ["2024-01-08T10:00:00"])

    result = await service.run_backfill()

    assert result.start_date == date(2024, 1, 8)
    assert result.end_date == TODAY
    assert result.dates_processed == 3


@pytest.mark.asyncio
async def test_run_scheduled_catches_up_missing_days(service, config):
    """Completed days are skipped; missing recent days and today are collected."""
    conn = connect(config.db_path)
    run_id = start_collection_run(conn, "2024-01-08")
    complete_collection_run(conn, run_id, 5)
    conn.close()

    result = await service.run_scheduled()

    assert isinstance(result, BackfillResult)
    assert result.status == BackfillStatus.COMPLETED
    assert result.dates_processed == 3
    assert _runs(config)[1:] == [
        ("2024-01-07", "completed"),
        ("2024-01-09", "completed"),
        ("2024-01-10", "completed"),
    ]


def test_sweep_stale_runs(service, config):
    conn = connect(config.db_path)
    start_collection_run(
        conn,
        "2024-01-09",
        started_at=datetime.now(timezone.utc) - timedelta(hours=2),
    )
    conn.close()

    swept = service.sweep_stale_runs()

    assert swept == 1
    assert _runs(config) == [("2024-01-09", "failed")]


@pytest.mark.asyncio
async def test_service_builds_sqlite_source_from_config(tmp_path):
    source_path = tmp_path / "community.db"
    source_conn = sqlite3.connect(source_path)
    for table in ("profiles", "posts", "comments"):
        source_conn.execute(f"CREATE TABLE {table} (id INTEGER PRIMARY KEY, created_at TEXT)")
    source_conn.executemany(
        "INSERT INTO profiles (created_at) VALUES (?)", [("2024-01-01T00:00:00",)] * 4
    )
    source_conn.commit()
    source_conn.close()

    config = MetricsConfig(db_path=tmp_path / "metrics.db", source_db_path=source_path)
    service = MetricsCollectorService(config)

    await service.run_once(date(2024, 1, 2))

    conn = connect(config.db_path)
    value = conn.execute(
        "SELECT value FROM daily_metrics WHERE category='users_total'"
    ).fetchone()[0]
    conn.close()
    assert value == 4
