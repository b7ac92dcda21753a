"""Pydantic models for metrics collection results and read queries."""
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    """CollectionRun lifecycle states."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class BackfillStatus(str, Enum):
    """Aggregate outcome of a backfill range."""

    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


class MetricRecord(BaseModel):
    """One snapshot of one named quantity on one date."""

    metric_date: date = Field(..., description="Date the metric describes (not write time)")
    category: str = Field(..., description="Metric category, e.g. users_total")
    metric_type: str = Field("count", description="Metric type")
    value: float = Field(..., description="Metric value")
    metadata: dict[str, Any] = Field(default_factory=dict)
    written_at: Optional[datetime] = Field(None, description="Last write timestamp")


class CollectionRun(BaseModel):
    """Audit record of one collector invocation."""

    id: int
    target_date: date
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: RunStatus
    metrics_written: int = 0
    error_message: Optional[str] = None
    error_details: Optional[dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != RunStatus.RUNNING


class CollectionResult(BaseModel):
    """Summary returned by the daily collector."""

    target_date: date
    run_id: int
    metrics_written: int
    elapsed_ms: int
    status: RunStatus


class BackfillResult(BaseModel):
    """Summary returned by the range backfiller."""

    start_date: date
    end_date: date
    dates_processed: int = Field(..., description="Dates attempted in the range")
    dates_failed: int = 0
    failed_dates: list[date] = Field(default_factory=list)
    total_metrics: int
    elapsed_ms: int
    status: BackfillStatus

    @property
    def is_success(self) -> bool:
        return self.status == BackfillStatus.COMPLETED


class MetricDefinition(BaseModel):
    """Display metadata for a metric category."""

    metric_type: str
    category: str
    display_name: str
    description: Optional[str] = None
    unit: Optional[str] = None
    format_pattern: Optional[str] = None
    is_active: bool = True


class CurrentMetrics(BaseModel):
    """Latest cumulative totals for dashboard headers."""

    total_users: float = 0
    total_posts: float = 0
    total_comments: float = 0
    as_of: Optional[date] = Field(None, description="Most recent date with data")


class ActivityDataPoint(BaseModel):
    """Daily activity point for charting."""

    date: date
    posts: float = 0
    comments: float = 0


class CollectionStatus(BaseModel):
    """Status of the most recent collection run."""

    last_run: datetime
    target_date: date
    status: RunStatus
    metrics_written: int
    duration_ms: int
    error_message: Optional[str] = None
