"""Historical backfill over an explicit date range."""

from __future__ import annotations

import logging
from datetime import date

from macro_ingestor.core.models import IngestResult, SeriesStats
from macro_ingestor.pipeline.base import ingest_range
from macro_ingestor.providers.chain import ProviderChain
from macro_ingestor.providers.resolver import SeriesIdResolver
from macro_ingestor.storage.store import SeriesRepository

logger = logging.getLogger(__name__)


class BackfillSeries:
    """Fetch and store ``[start, end]`` for one series.

    Re-running a backfill over an already stored range is safe: points are
    upserted on ``(series_id, ts)``.
    """

    def __init__(
        self,
        store: SeriesRepository,
        chain: ProviderChain,
        resolver: SeriesIdResolver | None = None,
    ) -> None:
        self._store = store
        self._chain = chain
        self._resolver = resolver

    async def execute(
        self, series_id: str, start: date, end: date | None = None
    ) -> IngestResult:
        if end is not None and end < start:
            return IngestResult(
                series_id=series_id,
                success=False,
                error=f"end date {end} is before start date {start}",
            )
        logger.info("Backfilling %s from %s to %s", series_id, start, end or "latest")
        return await ingest_range(
            self._store, self._chain, series_id, start, end, resolver=self._resolver
        )

    async def get_backfill_stats(self, series_id: str) -> SeriesStats | None:
        return await self._store.get_series_stats(series_id)
