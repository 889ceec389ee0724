"""BCRA FX quotes adapter (``estadisticascambiarias/v1.0``).

External ids are ISO currency codes (``USD``, ``EUR``), optionally with an
``fx.`` routing prefix. Each result day carries a ``detalle`` list; the quote
for the requested currency is taken, falling back to the first entry.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from macro_ingestor.core.config import BCRA_CAMBIARIAS
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

_QUOTES_PATH = "/Cotizaciones"
_CURRENCIES_PATH = "/Maestros/Divisas"
_ROUTING_PREFIX = "fx."


class CotizacionesPage(BaseModel):
    """``{"results": [{"fecha": ..., "detalle": [{"codigoMoneda", "tipoCotizacion"}]}]}``"""

    results: list[Any]


class Divisa(BaseModel):
    codigo: str
    denominacion: str = ""


class DivisasCatalog(BaseModel):
    results: list[Divisa]


def _quote_extractor(currency: str):
    def extract(item: dict) -> tuple[Any, Any]:
        detalle = item["detalle"]
        for entry in detalle:
            if isinstance(entry, dict) and entry.get("codigoMoneda") == currency:
                return item["fecha"], entry.get("tipoCotizacion")
        return item["fecha"], detalle[0]["tipoCotizacion"]

    return extract


class BcraCambiariasProvider:
    """Daily official FX quotes published by BCRA, one series per currency."""

    name = BCRA_CAMBIARIAS

    def __init__(self, client: SourceClient, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self._client = client
        self._page_size = page_size

    async def close(self) -> None:
        await self._client.close()

    async def health(self) -> ProviderHealth:
        return await self._client.probe(f"{_QUOTES_PATH}/USD")

    async def fetch_range(self, params: FetchRangeParams) -> FetchRangeResult:
        currency = params.external_id.removeprefix(_ROUTING_PREFIX).upper()
        limit = params.limit or self._page_size
        extract = _quote_extractor(currency)

        async def fetch_page(offset: int, page_limit: int) -> tuple[int, list[SeriesPoint]]:
            body = await self._client.get_json(
                f"{_QUOTES_PATH}/{currency}",
                params={
                    "fechadesde": params.start.isoformat(),
                    "fechahasta": params.end.isoformat() if params.end else None,
                    "limit": page_limit,
                    "offset": offset,
                },
            )
            page = parse_envelope(self.name, CotizacionesPage, body)
            return len(page.results), normalize_points(
                page.results, params.external_id, extract
            )

        points = await collect_pages(self.name, fetch_page, limit, params.offset)
        logger.info(
            "Fetched %d %s quotes for %s", len(points), currency, params.external_id
        )
        return build_result(self.name, points)

    async def get_available_series(self) -> list[AvailableSeries]:
        body = await self._client.get_json(_CURRENCIES_PATH)
        catalog = parse_envelope(self.name, DivisasCatalog, body)
        return [
            AvailableSeries(
                id=d.codigo,
                title=d.denominacion or d.codigo,
                frequency=Frequency.DAILY.value,
            )
            for d in catalog.results
        ]
