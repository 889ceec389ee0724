"""Shared pytest fixtures for macro-ingestor."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from macro_ingestor.core.config import HttpConfig, StorageConfig
from macro_ingestor.core.models import (
    AvailableSeries,
    FetchRangeParams,
    FetchRangeResult,
    ProviderHealth,
    SeriesPoint,
)
from macro_ingestor.storage.store import SqliteStore


class FakeProvider:
    """In-memory SeriesProvider with call counters.

    ``points`` may be a list (returned for every fetch) or an exception
    instance (raised on every fetch).
    """

    def __init__(
        self,
        name: str,
        points: list[SeriesPoint] | Exception | None = None,
        healthy: bool | BaseException = True,
        available: list[AvailableSeries] | None = None,
    ) -> None:
        self.name = name
        self._points = points if points is not None else []
        self._healthy = healthy
        self._available = available or []
        self.fetch_calls: list[FetchRangeParams] = []
        self.health_calls = 0
        self.closed = False

    async def health(self) -> ProviderHealth:
        self.health_calls += 1
        if isinstance(self._healthy, BaseException):
            raise self._healthy
        if self._healthy:
            return ProviderHealth(is_healthy=True, response_time_ms=1.0)
        return ProviderHealth(is_healthy=False, error="down")

    async def fetch_range(self, params: FetchRangeParams) -> FetchRangeResult:
        self.fetch_calls.append(params)
        if isinstance(self._points, Exception):
            raise self._points
        points = [p.model_copy(update={"series_id": params.external_id}) for p in self._points]
        return FetchRangeResult(points=points, total_count=len(points), provider=self.name)

    async def get_available_series(self) -> list[AvailableSeries]:
        return list(self._available)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_point():
    """Factory for SeriesPoint with overridable defaults."""

    def _make(series_id: str = "1", ts: date = date(2024, 1, 2), value: float = 100.0, **kw):
        return SeriesPoint(series_id=series_id, ts=ts, value=value, **kw)

    return _make


@pytest.fixture
def make_points():
    """Factory for ``n`` consecutive daily points starting at ``start``."""

    def _make(n: int, series_id: str = "1", start: date = date(2024, 1, 1)):
        return [
            SeriesPoint(series_id=series_id, ts=start + timedelta(days=i), value=float(i))
            for i in range(n)
        ]

    return _make


@pytest.fixture
def fake_provider_cls():
    return FakeProvider


@pytest.fixture
def fast_http() -> HttpConfig:
    """Retries enabled, no waiting."""
    return HttpConfig(timeout=5.0, retries=2, backoff_base_seconds=0.0, backoff_max_seconds=0.0)


@pytest.fixture
async def store():
    """An initialized in-memory SqliteStore."""
    s = SqliteStore(StorageConfig(sqlite_path=":memory:"))
    await s.initialize()
    yield s
    await s.close()
