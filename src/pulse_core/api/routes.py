"""FastAPI routes for metrics reads and collection triggers."""
import logging
import uuid
from datetime import date
from typing import AsyncIterator, Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    HTTPException,
    Query,
    Request,
    status,
)
from pydantic import BaseModel, Field

from ..metrics.config import MetricsConfig, redact_text
from ..metrics.exceptions import CollectionLockedError, ConfigurationError
from ..metrics.query import MetricsQueryService
from ..metrics.schema import connect
from ..metrics.service import MetricsCollectorService
from ..schemas.metrics import (
    ActivityDataPoint,
    CollectionResult,
    CollectionRun,
    CollectionStatus,
    CurrentMetrics,
    MetricDefinition,
    MetricRecord,
)
from .auth import require_api_key


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["metrics"])


class CollectionRunRequest(BaseModel):
    """Request payload for a manual single-date collection."""

    target_date: Optional[date] = Field(
        None, description="Date to collect (defaults to today)"
    )


class BackfillJobRequest(BaseModel):
    """Request payload for a backfill job."""

    start_date: Optional[date] = Field(
        None, description="First date (defaults to earliest post/comment date)"
    )
    end_date: Optional[date] = Field(None, description="Last date (defaults to today)")


class BackfillJobResponse(BaseModel):
    """Immediate response for a queued backfill."""

    job_id: str = Field(..., description="Server-generated job ID")
    status: str = Field(..., description="Job status (always 'queued' on acceptance)")
    start_date: Optional[date] = None
    end_date: Optional[date] = None


def get_config(request: Request) -> MetricsConfig:
    return request.app.state.config


async def get_query_service(
    config: MetricsConfig = Depends(get_config),
) -> AsyncIterator[MetricsQueryService]:
    db_conn = connect(config.db_path)
    try:
        yield MetricsQueryService(db_conn, tzinfo=config.tzinfo)
    finally:
        db_conn.close()


def get_collector_service(
    config: MetricsConfig = Depends(get_config),
) -> MetricsCollectorService:
    try:
        return MetricsCollectorService(config)
    except ConfigurationError as exc:
        logger.error("Collector not configured: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Metrics collector is not configured: {exc}",
        ) from exc


@router.get("/metrics", response_model=list[MetricRecord], summary="Metrics for a date range")
async def list_metrics(
    start_date: date,
    end_date: date,
    category: Optional[list[str]] = Query(None, description="Filter by category"),
    metric_type: Optional[list[str]] = Query(None, description="Filter by metric type"),
    queries: MetricsQueryService = Depends(get_query_service),
) -> list[MetricRecord]:
    if start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date cannot be after end_date",
        )
    return queries.fetch_metrics(start_date, end_date, category, metric_type)


@router.get("/metrics/current", response_model=CurrentMetrics, summary="Latest totals")
async def current_metrics(
    queries: MetricsQueryService = Depends(get_query_service),
) -> CurrentMetrics:
    return queries.fetch_current_metrics()


@router.get(
    "/metrics/activity",
    response_model=list[ActivityDataPoint],
    summary="Zero-filled daily activity series",
)
async def activity_series(
    days: int = Query(30, ge=1, le=366),
    end_date: Optional[date] = None,
    queries: MetricsQueryService = Depends(get_query_service),
) -> list[ActivityDataPoint]:
    return queries.fetch_activity_data(days=days, end_date=end_date)


@router.get(
    "/metrics/definitions",
    response_model=list[MetricDefinition],
    summary="Metric display metadata",
)
async def metric_definitions(
    queries: MetricsQueryService = Depends(get_query_service),
) -> list[MetricDefinition]:
    return queries.list_definitions()


@router.get(
    "/collection/status",
    response_model=CollectionStatus,
    dependencies=[Depends(require_api_key)],
    summary="Most recent collection run",
)
async def collection_status(
    queries: MetricsQueryService = Depends(get_query_service),
) -> CollectionStatus:
    result = queries.get_collection_status()
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No collection runs recorded",
        )
    return result


@router.get(
    "/collection/runs",
    response_model=list[CollectionRun],
    dependencies=[Depends(require_api_key)],
    summary="Recent collection runs",
)
async def collection_runs(
    limit: int = Query(20, ge=1, le=200),
    queries: MetricsQueryService = Depends(get_query_service),
) -> list[CollectionRun]:
    return queries.list_collection_runs(limit)


@router.post(
    "/collection/run",
    response_model=CollectionResult,
    dependencies=[Depends(require_api_key)],
    summary="Collect metrics for one date now",
)
async def trigger_collection(
    payload: CollectionRunRequest,
    service: MetricsCollectorService = Depends(get_collector_service),
) -> CollectionResult:
    """Run the collector synchronously and return its result.

    Returns 409 if another collector holds the date lock, 500 if collection
    fails (the failure is recorded in the run log either way).
    """
    try:
        return await service.run_once(payload.target_date)
    except CollectionLockedError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from exc
    except Exception as exc:
        logger.error(
            "Manual collection failed: %s",
            redact_text(str(exc), service.config.secrets),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Metric collection failed; see collection log",
        ) from exc


async def _run_backfill_job(
    job_id: str,
    service: MetricsCollectorService,
    payload: BackfillJobRequest,
) -> None:
    """Background task: run a backfill.

    This function MUST be exception-safe; all errors are caught and logged.
    """
    try:
        logger.info(
            "Starting backfill job: job_id=%s, start=%s, end=%s",
            job_id,
            payload.start_date,
            payload.end_date,
        )
        result = await service.run_backfill(payload.start_date, payload.end_date)
        logger.info(
            "Backfill job %s finished: status=%s, dates=%s, failed=%s",
            job_id,
            result.status.value,
            result.dates_processed,
            result.dates_failed,
        )
    except Exception as exc:
        logger.error("Backfill job %s failed with exception: %s", job_id, exc, exc_info=True)


@router.post(
    "/collection/backfill",
    response_model=BackfillJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_api_key)],
    summary="Submit backfill job",
    description=(
        "Queue a backfill over an inclusive date range. Returns immediately "
        "(202 Accepted) with job_id; dates are collected sequentially in the background."
    ),
)
async def create_backfill_job(
    payload: BackfillJobRequest,
    background_tasks: BackgroundTasks,
    service: MetricsCollectorService = Depends(get_collector_service),
) -> BackfillJobResponse:
    if payload.start_date and payload.end_date and payload.start_date > payload.end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date cannot be after end_date",
        )

    job_id = str(uuid.uuid4())
    background_tasks.add_task(_run_backfill_job, job_id, service, payload)

    logger.info("Queued backfill job: job_id=%s", job_id)

    return BackfillJobResponse(
        job_id=job_id,
        status="queued",
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
