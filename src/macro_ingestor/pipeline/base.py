"""Shared fetch → relabel → upsert step used by update and backfill."""

from __future__ import annotations

import logging
from datetime import date
from functools import partial

from macro_ingestor.core.models import FetchRangeParams, IngestResult
from macro_ingestor.providers.chain import ProviderChain
from macro_ingestor.providers.resolver import SeriesIdResolver
from macro_ingestor.storage.store import SeriesRepository

logger = logging.getLogger(__name__)


async def ingest_range(
    store: SeriesRepository,
    chain: ProviderChain,
    series_id: str,
    start: date,
    end: date | None = None,
    resolver: SeriesIdResolver | None = None,
) -> IngestResult:
    """Fetch ``[start, end]`` for a canonical series and upsert it.

    The chain routes on the canonical id and, with a resolver, asks for
    each candidate's native id before fetching from it. Stored points
    always carry the canonical id. Any failure is reported in the returned
    IngestResult rather than raised.
    """
    try:
        resolve = None
        if resolver is not None:
            resolve = partial(resolver.resolve_to_external_id, series_id)

        result = await chain.fetch_range(
            FetchRangeParams(external_id=series_id, start=start, end=end), resolve=resolve
        )
        points = [
            p if p.series_id == series_id else p.model_copy(update={"series_id": series_id})
            for p in result.points
        ]
        stored = await store.upsert_points(points) if points else 0
    except Exception as e:
        logger.error("Ingest failed for %s: %s", series_id, e)
        return IngestResult(series_id=series_id, success=False, error=str(e))

    logger.info(
        "Ingested %s from %s: fetched=%d stored=%d",
        series_id, result.provider, len(points), stored,
    )
    return IngestResult(
        series_id=series_id,
        success=True,
        points_fetched=len(points),
        points_stored=stored,
        provider=result.provider,
    )
