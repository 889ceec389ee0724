"""FastAPI route definitions for the Macro Ingestor API."""

from __future__ import annotations

import logging
from datetime import UTC as _UTC, date, datetime
from uuid import uuid4

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

import macro_ingestor
from macro_ingestor.api.deps import (
    AppState,
    JobStatus,
    get_app_state,
    get_chain,
    get_store,
)
from macro_ingestor.api.schemas import (
    HealthResponse,
    JobResponse,
    JobStatusResponse,
    PointListResponse,
    PointResponse,
    ProviderHealthResponse,
    ReadyResponse,
    SeriesResponse,
    SeriesStatsResponse,
    UpdateRequest,
)
from macro_ingestor.pipeline.update import FetchAndStoreSeries
from macro_ingestor.providers.chain import ProviderChain
from macro_ingestor.storage.store import SqliteStore

logger = logging.getLogger(__name__)

router = APIRouter()


# -- Health --


@router.get("/health", response_model=HealthResponse)
async def health_check(store: SqliteStore = Depends(get_store)):
    """Liveness plus database check and basic counts."""
    db_ok = await store.health_check()
    stats = await store.get_statistics() if db_ok else {}
    return HealthResponse(
        status="ok" if db_ok else "degraded",
        version=macro_ingestor.__version__,
        database=db_ok,
        total_series=stats.get("total_series", 0),
        total_points=stats.get("total_points", 0),
        total_mappings=stats.get("total_mappings", 0),
    )


@router.get("/ready", response_model=ReadyResponse)
async def readiness(
    store: SqliteStore = Depends(get_store),
    chain: ProviderChain = Depends(get_chain),
):
    """Ready when the database answers and at least one provider is healthy."""
    db_ok = await store.health_check()
    statuses = await chain.get_health_status()
    healthy = [name for name, h in statuses.items() if h.is_healthy]
    body = ReadyResponse(ready=db_ok and bool(healthy), database=db_ok, healthy_providers=healthy)
    if not body.ready:
        return JSONResponse(status_code=503, content=body.model_dump())
    return body


@router.get("/providers/health", response_model=list[ProviderHealthResponse])
async def providers_health(chain: ProviderChain = Depends(get_chain)):
    statuses = await chain.get_health_status()
    return [
        ProviderHealthResponse(
            name=name,
            is_healthy=h.is_healthy,
            response_time_ms=h.response_time_ms,
            error=h.error,
        )
        for name, h in statuses.items()
    ]


# -- Series --


@router.get("/series", response_model=list[SeriesResponse])
async def list_series(store: SqliteStore = Depends(get_store)):
    return [
        SeriesResponse(
            id=m.id,
            source=m.source.value,
            frequency=m.frequency.value,
            unit=m.unit,
            metadata=m.metadata,
        )
        for m in await store.list_series_metadata()
    ]


@router.get("/series/{series_id}/stats", response_model=SeriesStatsResponse)
async def get_series_stats(series_id: str, store: SqliteStore = Depends(get_store)):
    stats = await store.get_series_stats(series_id)
    if stats is None:
        raise HTTPException(status_code=404, detail=f"No data stored for series '{series_id}'")
    return SeriesStatsResponse(series_id=series_id, **stats.model_dump())


@router.get("/series/{series_id}/points", response_model=PointListResponse)
async def get_series_points(
    series_id: str,
    start: date | None = Query(None),
    end: date | None = Query(None),
    store: SqliteStore = Depends(get_store),
):
    """Stored points for a series in ascending date order."""
    if start and end and end < start:
        raise HTTPException(status_code=422, detail="end must not precede start")
    points = await store.get_points(series_id, start, end)
    return PointListResponse(
        series_id=series_id,
        total=len(points),
        items=[PointResponse(ts=p.ts, value=p.value) for p in points],
    )


# -- Pipeline Triggers --


@router.post("/pipeline/update", response_model=JobResponse, status_code=202)
async def trigger_update(
    request: UpdateRequest,
    background_tasks: BackgroundTasks,
    state: AppState = Depends(get_app_state),
):
    """Trigger an incremental update (async job)."""
    series = request.series or state.config.pipeline.series_whitelist
    if not series:
        raise HTTPException(
            status_code=400,
            detail="No series given and pipeline.series_whitelist is empty",
        )

    job_id = f"update-{uuid4().hex[:8]}"
    now = datetime.now(tz=_UTC).isoformat()
    job = JobStatus(job_id=job_id, status="pending", created_at=now)
    state.jobs[job_id] = job

    background_tasks.add_task(_run_update_job, state, job, list(series))

    return JobResponse(
        job_id=job_id,
        status="pending",
        created_at=datetime.fromisoformat(now),
        message=f"Update job queued for {len(series)} series",
    )


# -- Jobs --


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str, state: AppState = Depends(get_app_state)):
    """Poll job status."""
    job = state.jobs.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job '{job_id}' not found")

    return JobStatusResponse(
        job_id=job.job_id,
        status=job.status,
        created_at=datetime.fromisoformat(job.created_at),
        completed_at=(datetime.fromisoformat(job.completed_at) if job.completed_at else None),
        result=job.result,
        error=job.error,
    )


# -- Helpers --


async def _run_update_job(state: AppState, job: JobStatus, series: list[str]) -> None:
    job.status = "running"
    try:
        pipeline = state.config.pipeline
        use_case = FetchAndStoreSeries(
            state.store,
            state.chain,
            resolver=state.resolver,
            default_lookback_days=pipeline.default_lookback_days,
            max_concurrent=pipeline.max_concurrent,
            today=lambda: datetime.now(pipeline.tz).date(),
        )
        results = await use_case.execute_many(series)

        job.status = "completed"
        job.completed_at = datetime.now(tz=_UTC).isoformat()
        job.result = {
            "succeeded": sum(1 for r in results if r.success),
            "failed": sum(1 for r in results if not r.success),
            "series": [r.model_dump() for r in results],
        }
    except Exception as e:
        logger.error("Update job %s failed: %s", job.job_id, e)
        job.status = "failed"
        job.completed_at = datetime.now(tz=_UTC).isoformat()
        job.error = str(e)
