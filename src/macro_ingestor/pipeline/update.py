"""Incremental update: fetch everything newer than the last stored point."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from macro_ingestor.core.models import IngestResult
from macro_ingestor.pipeline.base import ingest_range
from macro_ingestor.providers.chain import ProviderChain
from macro_ingestor.providers.resolver import SeriesIdResolver
from macro_ingestor.storage.store import SeriesRepository

logger = logging.getLogger(__name__)

_DEFAULT_TZ = ZoneInfo("America/Argentina/Buenos_Aires")


def determine_from_date(
    last_date: date | None,
    today: date,
    default_lookback_days: int = 1,
) -> date:
    """Day after the last stored point, or ``today - default_lookback_days``."""
    if last_date is not None:
        return last_date + timedelta(days=1)
    return today - timedelta(days=default_lookback_days)


class FetchAndStoreSeries:
    """Incrementally update one or many series.

    Multi-series runs go through a worker pool of ``max_concurrent``
    slots; each series is fetched and stored independently and one
    failure does not affect the others.
    """

    def __init__(
        self,
        store: SeriesRepository,
        chain: ProviderChain,
        resolver: SeriesIdResolver | None = None,
        default_lookback_days: int = 1,
        max_concurrent: int = 4,
        today: Callable[[], date] | None = None,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._store = store
        self._chain = chain
        self._resolver = resolver
        self._lookback = default_lookback_days
        self._max_concurrent = max_concurrent
        self._today = today or (lambda: datetime.now(_DEFAULT_TZ).date())

    async def execute(self, series_id: str) -> IngestResult:
        try:
            last_date = await self._store.get_last_date(series_id)
        except Exception as e:
            logger.error("Could not read last date for %s: %s", series_id, e)
            return IngestResult(series_id=series_id, success=False, error=str(e))

        start = determine_from_date(last_date, self._today(), self._lookback)
        logger.info("Updating %s from %s (last stored: %s)", series_id, start, last_date)
        return await ingest_range(
            self._store, self._chain, series_id, start, resolver=self._resolver
        )

    async def execute_many(self, series_ids: Sequence[str]) -> list[IngestResult]:
        """Update every series with at most ``max_concurrent`` in flight.

        Results come back in the order of ``series_ids``.
        """
        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def _bounded(series_id: str) -> IngestResult:
            async with semaphore:
                return await self.execute(series_id)

        logger.info(
            "Updating %d series (max %d concurrent)", len(series_ids), self._max_concurrent
        )
        results = await asyncio.gather(*(_bounded(s) for s in series_ids))

        failed = [r.series_id for r in results if not r.success]
        if failed:
            logger.warning("%d/%d series failed: %s", len(failed), len(results), failed)
        return list(results)
