"""API-specific request/response schemas (Pydantic v2)."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: str
    detail: str | None = None


# -- Series --


class SeriesResponse(BaseModel):
    id: str
    source: str
    frequency: str
    unit: str | None = None
    metadata: dict = Field(default_factory=dict)


class SeriesStatsResponse(BaseModel):
    series_id: str
    total_points: int
    first_date: date | None = None
    last_date: date | None = None
    min_value: float | None = None
    max_value: float | None = None
    avg_value: float | None = None


class PointResponse(BaseModel):
    ts: date
    value: float


class PointListResponse(BaseModel):
    series_id: str
    total: int
    items: list[PointResponse]


# -- Providers --


class ProviderHealthResponse(BaseModel):
    name: str
    is_healthy: bool
    response_time_ms: float | None = None
    error: str | None = None


# -- Pipeline --


class UpdateRequest(BaseModel):
    """Request body for POST /api/pipeline/update.

    ``series`` defaults to the configured whitelist.
    """

    series: list[str] | None = Field(default=None, max_length=500)


class JobResponse(BaseModel):
    """Response for async pipeline job submission."""

    job_id: str
    status: str
    created_at: datetime
    message: str


class JobStatusResponse(BaseModel):
    """Response for job status polling."""

    job_id: str
    status: str
    created_at: datetime
    completed_at: datetime | None = None
    result: dict | None = None
    error: str | None = None


# -- Health --


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    status: str = "ok"
    version: str
    database: bool
    total_series: int
    total_points: int
    total_mappings: int


class ReadyResponse(BaseModel):
    ready: bool
    database: bool
    healthy_providers: list[str]
