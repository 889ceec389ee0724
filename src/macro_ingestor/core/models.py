"""Pydantic data models for series, providers and pipeline results."""

from __future__ import annotations

import math
from datetime import date
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# --- Type Aliases ---

SeriesId = str
ProviderName = str

# --- Enumerations ---


class SeriesSource(StrEnum):
    """Publishing institution of a canonical series."""

    CENTRAL_BANK_MONETARY = "bcra"
    CENTRAL_BANK_FX = "bcra_cambiarias"
    STATISTICS_AGENCY = "indec"
    LABOR_MINISTRY = "mintrab"
    TAX_AGENCY = "afip"


class Frequency(StrEnum):
    """Observation frequency of a series."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


# --- Series Models ---


class SeriesPoint(BaseModel):
    """One observation of a series, as stored."""

    model_config = ConfigDict(frozen=True)

    series_id: SeriesId
    ts: date
    value: float
    metadata: dict[str, Any] | None = None

    @field_validator("series_id")
    @classmethod
    def series_id_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("series_id must not be empty")
        return v

    @field_validator("value")
    @classmethod
    def value_must_be_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError(f"value must be finite, got {v!r}")
        return v


class SeriesMetadata(BaseModel):
    """Descriptive row for a canonical series."""

    model_config = ConfigDict(frozen=True)

    id: SeriesId
    source: SeriesSource
    frequency: Frequency
    unit: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SeriesMapping(BaseModel):
    """Link between a canonical id and one provider's native id."""

    model_config = ConfigDict(frozen=True)

    internal_series_id: SeriesId
    external_series_id: str
    provider_name: ProviderName
    keywords: list[str] = Field(default_factory=list)
    description: str | None = None


class SeriesStats(BaseModel):
    """Aggregate view over a series' stored points."""

    model_config = ConfigDict(frozen=True)

    total_points: int
    first_date: date | None = None
    last_date: date | None = None
    min_value: float | None = None
    max_value: float | None = None
    avg_value: float | None = None


# --- Provider Models ---


class ProviderHealth(BaseModel):
    """Result of a single health probe. Never persisted."""

    model_config = ConfigDict(frozen=True)

    is_healthy: bool
    response_time_ms: float | None = None
    error: str | None = None


class FetchRangeParams(BaseModel):
    """Request for a date range of one series from one provider."""

    model_config = ConfigDict(frozen=True)

    external_id: str
    start: date
    end: date | None = None
    limit: int | None = None
    offset: int = 0

    @field_validator("limit")
    @classmethod
    def limit_positive(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("limit must be >= 1")
        return v

    @field_validator("offset")
    @classmethod
    def offset_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("offset must be >= 0")
        return v

    @model_validator(mode="after")
    def end_not_before_start(self) -> FetchRangeParams:
        if self.end is not None and self.end < self.start:
            raise ValueError(f"end ({self.end}) must not be before start ({self.start})")
        return self


class FetchRangeResult(BaseModel):
    """Fully materialized answer to a FetchRangeParams request."""

    model_config = ConfigDict(frozen=True)

    points: list[SeriesPoint] = Field(default_factory=list)
    total_count: int = 0
    has_more: bool = False
    provider: ProviderName


class AvailableSeries(BaseModel):
    """A series an upstream source says it can serve (discovery only)."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str | None = None
    frequency: str | None = None


# --- Pipeline Models ---


class IngestResult(BaseModel):
    """Outcome of one fetch-and-store run for one series."""

    series_id: SeriesId
    success: bool
    points_fetched: int = 0
    points_stored: int = 0
    provider: ProviderName | None = None
    error: str | None = None
