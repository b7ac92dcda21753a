"""Pulse metrics collection layer.

Snapshots daily community counts (users, posts, comments) from:
- SQLite: a local copy of the community database
- Supabase: the managed backend's PostgREST API

Persists to:
- SQLite: data/metrics.db (daily_metrics + metric_collection_log audit trail)
"""
from .backfill import RangeBackfiller, backfill_daily_metrics
from .collector import DailyMetricsCollector, collect_daily_metrics
from .config import MetricsConfig
from .query import MetricsQueryService
from .schema import init_database
from .service import MetricsCollectorService

__all__ = [
    "DailyMetricsCollector",
    "MetricsCollectorService",
    "MetricsConfig",
    "MetricsQueryService",
    "RangeBackfiller",
    "backfill_daily_metrics",
    "collect_daily_metrics",
    "init_database",
]
