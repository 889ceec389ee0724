"""BCRA monetary statistics adapter (``/estadisticas/v3.0/Monetarias``).

Series are addressed by the numeric ``idVariable`` (``"1"``, ``"7"``, ...);
a ``bcra.`` routing prefix is accepted and stripped.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from macro_ingestor.core.config import BCRA_MONETARIAS
from macro_ingestor.core.models import (
    AvailableSeries,
    FetchRangeParams,
    FetchRangeResult,
    Frequency,
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

_SERIES_PATH = "/estadisticas/v3.0/Monetarias"
_ROUTING_PREFIX = "bcra."

# categoria keyword -> frequency, checked in order
_FREQUENCY_KEYWORDS: tuple[tuple[tuple[str, ...], Frequency], ...] = (
    (("diario", "diaria"), Frequency.DAILY),
    (("mensual",), Frequency.MONTHLY),
    (("semanal",), Frequency.WEEKLY),
    (("trimestral",), Frequency.QUARTERLY),
    (("anual",), Frequency.YEARLY),
)


class MonetariasPage(BaseModel):
    """``{"status": 200, "results": [{"fecha": ..., "valor": ...}]}``"""

    results: list[Any]


class MonetariasVariable(BaseModel):
    idVariable: int | str
    descripcion: str = ""
    categoria: str | None = None


class MonetariasCatalog(BaseModel):
    """Catalog endpoint. Older deployments answered under ``data``."""

    results: list[MonetariasVariable] | None = None
    data: list[MonetariasVariable] | None = None

    @property
    def variables(self) -> list[MonetariasVariable]:
        return self.results if self.results is not None else (self.data or [])


def infer_frequency(categoria: str | None) -> Frequency:
    """Map BCRA's free-text ``categoria`` to a Frequency (daily if unknown)."""
    text = (categoria or "").lower()
    for keywords, frequency in _FREQUENCY_KEYWORDS:
        if any(k in text for k in keywords):
            return frequency
    return Frequency.DAILY


class BcraMonetariasProvider:
    """Paginated BCRA monetary series (reserves, base money, rates...)."""

    name = BCRA_MONETARIAS

    def __init__(self, client: SourceClient, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self._client = client
        self._page_size = page_size

    async def close(self) -> None:
        await self._client.close()

    async def health(self) -> ProviderHealth:
        return await self._client.probe(_SERIES_PATH)

    async def fetch_range(self, params: FetchRangeParams) -> FetchRangeResult:
        variable_id = params.external_id.removeprefix(_ROUTING_PREFIX)
        limit = params.limit or self._page_size

        async def fetch_page(offset: int, page_limit: int) -> tuple[int, list[SeriesPoint]]:
            body = await self._client.get_json(
                f"{_SERIES_PATH}/{variable_id}",
                params={
                    "desde": params.start.isoformat(),
                    "hasta": params.end.isoformat() if params.end else None,
                    "limit": page_limit,
                    "offset": offset,
                },
            )
            page = parse_envelope(self.name, MonetariasPage, body)
            points = normalize_points(
                page.results,
                params.external_id,
                lambda item: (item["fecha"], item["valor"]),
            )
            return len(page.results), points

        points = await collect_pages(self.name, fetch_page, limit, params.offset)
        logger.info(
            "Fetched %d points for %s from %s", len(points), params.external_id, self.name
        )
        return build_result(self.name, points)

    async def get_available_series(self) -> list[AvailableSeries]:
        body = await self._client.get_json(_SERIES_PATH)
        catalog = parse_envelope(self.name, MonetariasCatalog, body)
        return [
            AvailableSeries(
                id=str(v.idVariable),
                title=v.descripcion or "Unknown",
                description=v.categoria,
                frequency=infer_frequency(v.categoria).value,
            )
            for v in catalog.variables
        ]
