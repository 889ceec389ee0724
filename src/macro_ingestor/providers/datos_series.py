"""datos.gob.ar time-series API adapter (``/series``)."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from macro_ingestor.core.config import DATOS_SERIES
from macro_ingestor.core.models import (
    AvailableSeries,
    FetchRangeParams,
    FetchRangeResult,
    ProviderHealth,
    SeriesPoint,
)
from macro_ingestor.core.normalize import normalize_points
from macro_ingestor.providers.base import (
    DEFAULT_PAGE_SIZE,
    build_result,
    collect_pages,
    parse_envelope,
)
from macro_ingestor.providers.http import SourceClient

logger = logging.getLogger(__name__)

_SERIES_PATH = "/series"
_ROUTING_PREFIX = "indec."
_HEALTH_SERIES_ID = "143.3_NO_PR_2004_A_21:IPC"


class SeriesPage(BaseModel):
    """``{"data": [["2024-01-01", 123.4], ...], "meta": [...]}``"""

    data: list[Any]


class DatosSeriesProvider:
    """Open-data series API. Ids look like ``168.1_T_CAMBIOR_D_0_0_26``.

    The API has no catalog endpoint usable for discovery, so
    :meth:`get_available_series` returns an empty list.
    """

    name = DATOS_SERIES

    def __init__(self, client: SourceClient, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self._client = client
        self._page_size = page_size

    async def close(self) -> None:
        await self._client.close()

    async def health(self) -> ProviderHealth:
        return await self._client.probe(
            _SERIES_PATH, params={"ids": _HEALTH_SERIES_ID, "limit": 1, "format": "json"}
        )

    async def fetch_range(self, params: FetchRangeParams) -> FetchRangeResult:
        series_id = params.external_id.removeprefix(_ROUTING_PREFIX)
        limit = params.limit or self._page_size

        async def fetch_page(offset: int, page_limit: int) -> tuple[int, list[SeriesPoint]]:
            body = await self._client.get_json(
                _SERIES_PATH,
                params={
                    "ids": series_id,
                    "start_date": params.start.isoformat(),
                    "end_date": params.end.isoformat() if params.end else None,
                    "limit": page_limit,
                    "start": offset,
                    "format": "json",
                },
            )
            page = parse_envelope(self.name, SeriesPage, body)
            return len(page.data), normalize_points(
                page.data, params.external_id, lambda row: (row[0], row[1])
            )

        points = await collect_pages(self.name, fetch_page, limit, params.offset)
        logger.info("Fetched %d points for %s from %s", len(points), series_id, self.name)
        return build_result(self.name, points)

    async def get_available_series(self) -> list[AvailableSeries]:
        return []
