"""Unit tests for the metrics read API."""
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest

from src.pulse_core.metrics.query import MetricsQueryService
from src.pulse_core.metrics.schema import (
    complete_collection_run,
    fail_collection_run,
    start_collection_run,
    upsert_metric,
)
from src.pulse_core.schemas.metrics import RunStatus


@pytest.fixture
def query(metrics_conn):
    return MetricsQueryService(metrics_conn)


@pytest.fixture
def populated(metrics_conn):
    """Two collected days of metrics."""
    for metric_date, users, posts, comments, new_posts, new_comments in [
        ("2024-01-01", 3, 1, 0, 1, 0),
        ("2024-01-02", 5, 3, 1, 2, 1),
    ]:
        upsert_metric(metrics_conn, metric_date, "users_total", users)
        upsert_metric(metrics_conn, metric_date, "posts_total", posts)
        upsert_metric(metrics_conn, metric_date, "comments_total", comments)
        upsert_metric(metrics_conn, metric_date, "posts_created", new_posts)
        upsert_metric(metrics_conn, metric_date, "comments_created", new_comments)
    return metrics_conn


def test_fetch_metrics_orders_by_date_then_category(query, populated):
    records = query.fetch_metrics(date(2024, 1, 1), date(2024, 1, 2))

    assert len(records) == 10
    assert records[0].metric_date == date(2024, 1, 1)
    assert records[0].category == "comments_created"
    assert records[-1].metric_date == date(2024, 1, 2)
    assert records[-1].category == "users_total"
    assert records[-1].value == 5


def test_fetch_metrics_filters_categories_and_types(query, populated):
    records = query.fetch_metrics(
        date(2024, 1, 1),
        date(2024, 1, 2),
        categories=["users_total"],
        types=["count"],
    )

    assert [(r.metric_date, r.value) for r in records] == [
        (date(2024, 1, 1), 3),
        (date(2024, 1, 2), 5),
    ]
    assert query.fetch_metrics(
        date(2024, 1, 1), date(2024, 1, 2), types=["percentage"]
    ) == []


def test_fetch_metrics_empty_range(query, populated):
    assert query.fetch_metrics(date(2023, 1, 1), date(2023, 1, 31)) == []


def test_fetch_current_metrics_uses_latest_date(query, populated):
    current = query.fetch_current_metrics()

    assert current.total_users == 5
    assert current.total_posts == 3
    assert current.total_comments == 1
    assert current.as_of == date(2024, 1, 2)


def test_fetch_current_metrics_defaults_when_empty(query):
    current = query.fetch_current_metrics()

    assert current.total_users == 0
    assert current.as_of is None


def test_fetch_activity_data_zero_fills(query, populated):
    """Days without rows appear with zero activity."""
    points = query.fetch_activity_data(days=4, end_date=date(2024, 1, 3))

    assert [p.date for p in points] == [
        date(2023, 12, 31),
        date(2024, 1, 1),
        date(2024, 1, 2),
        date(2024, 1, 3),
    ]
    assert [(p.posts, p.comments) for p in points] == [(0, 0), (1, 0), (2, 1), (0, 0)]


def test_fetch_activity_data_defaults_to_today_in_configured_timezone(metrics_conn, populated):
    """The default end date follows the configured zone, not the UTC clock."""
    tokyo = ZoneInfo("Asia/Tokyo")
    query = MetricsQueryService(metrics_conn, tzinfo=tokyo)

    with patch(
        "src.pulse_core.metrics.query.today_in", return_value=date(2024, 1, 2)
    ) as mock_today:
        points = query.fetch_activity_data(days=2)

    mock_today.assert_called_once_with(tokyo)
    assert [p.date for p in points] == [date(2024, 1, 1), date(2024, 1, 2)]
    assert points[-1].posts == 2


def test_query_service_defaults_to_utc(metrics_conn):
    assert MetricsQueryService(metrics_conn).tzinfo.key == "UTC"


def test_fetch_activity_data_rejects_non_positive_days(query):
    with pytest.raises(ValueError):
        query.fetch_activity_data(days=0)


def test_get_collection_status_none_without_runs(query):
    assert query.get_collection_status() is None


def test_get_collection_status_completed_duration(query, metrics_conn):
    started = datetime(2024, 1, 2, 0, 5, tzinfo=timezone.utc)
    run_id = start_collection_run(metrics_conn, "2024-01-01", started_at=started)
    complete_collection_run(
        metrics_conn, run_id, 5, completed_at=started + timedelta(milliseconds=1500)
    )

    status = query.get_collection_status()

    assert status.status == RunStatus.COMPLETED
    assert status.target_date == date(2024, 1, 1)
    assert status.metrics_written == 5
    assert status.duration_ms == 1500
    assert status.last_run == started


def test_get_collection_status_running_uses_now(query, metrics_conn):
    """A run still in progress reports elapsed time so far."""
    started = datetime(2024, 1, 2, 0, 0, tzinfo=timezone.utc)
    start_collection_run(metrics_conn, "2024-01-02", started_at=started)

    status = query.get_collection_status(now=started + timedelta(seconds=30))

    assert status.status == RunStatus.RUNNING
    assert status.duration_ms == 30000


def test_get_collection_status_picks_latest_run(query, metrics_conn):
    base = datetime(2024, 1, 2, tzinfo=timezone.utc)
    first = start_collection_run(metrics_conn, "2024-01-01", started_at=base)
    complete_collection_run(metrics_conn, first, 5, completed_at=base)
    second = start_collection_run(
        metrics_conn, "2024-01-02", started_at=base + timedelta(hours=1)
    )
    fail_collection_run(
        metrics_conn, second, "boom", completed_at=base + timedelta(hours=1, seconds=2)
    )

    status = query.get_collection_status()

    assert status.status == RunStatus.FAILED
    assert status.target_date == date(2024, 1, 2)
    assert status.error_message == "boom"
    assert status.duration_ms == 2000


def test_list_collection_runs_newest_first(query, metrics_conn):
    base = datetime(2024, 1, 2, tzinfo=timezone.utc)
    for offset in range(3):
        start_collection_run(
            metrics_conn, "2024-01-01", started_at=base + timedelta(minutes=offset)
        )

    runs = query.list_collection_runs(limit=2)

    assert len(runs) == 2
    assert runs[0].started_at > runs[1].started_at
    assert not runs[0].is_terminal


def test_list_definitions(query):
    definitions = query.list_definitions()

    assert [d.category for d in definitions] == [
        "users_total",
        "posts_total",
        "comments_total",
        "posts_created",
        "comments_created",
    ]
    assert all(d.metric_type == "count" for d in definitions)
    assert definitions[0].display_name
