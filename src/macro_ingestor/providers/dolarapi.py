"""dolarapi.com spot-rate adapter.

Spot only: each endpoint returns today's quote as a single object, so a
fetch yields at most one point regardless of the requested range.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from macro_ingestor.core.config import DOLARAPI
from macro_ingestor.core.exceptions import ProviderError
from macro_ingestor.core.models import (
    AvailableSeries,
    FetchRangeParams,
    FetchRangeResult,
    Frequency,
    ProviderHealth,
)
from macro_ingestor.core.normalize import normalize_points
from macro_ingestor.providers.base import build_result, parse_envelope
from macro_ingestor.providers.http import SourceClient

logger = logging.getLogger(__name__)

_ROUTING_PREFIX = "dolarapi."

# rate type -> (endpoint, title)
RATE_ENDPOINTS: dict[str, tuple[str, str]] = {
    "mep": ("/dolares/bolsa", "Dólar MEP"),
    "ccl": ("/dolares/contadoconliqui", "Dólar CCL"),
    "blue": ("/dolares/blue", "Dólar Blue"),
    "oficial": ("/dolares/oficial", "Dólar Oficial"),
}


class SpotQuote(BaseModel):
    """``{"compra": ..., "venta": ..., "fechaActualizacion": "2024-05-20T14:57:00.000Z"}``"""

    fechaActualizacion: Any = None
    venta: Any = None


def rate_type(external_id: str) -> str:
    """``dolarapi.mep_ars`` -> ``mep``."""
    return external_id.removeprefix(_ROUTING_PREFIX).removesuffix("_ars")


class DolarApiProvider:
    """Parallel-market USD spot quotes (MEP, CCL, blue) plus the official spot."""

    name = DOLARAPI

    def __init__(self, client: SourceClient) -> None:
        self._client = client

    async def close(self) -> None:
        await self._client.close()

    async def health(self) -> ProviderHealth:
        return await self._client.probe(RATE_ENDPOINTS["oficial"][0])

    async def fetch_range(self, params: FetchRangeParams) -> FetchRangeResult:
        kind = rate_type(params.external_id)
        if kind not in RATE_ENDPOINTS:
            raise ProviderError(
                f"{self.name}: unsupported series {params.external_id!r}",
                context={"provider": self.name, "external_id": params.external_id},
            )
        path, _ = RATE_ENDPOINTS[kind]
        body = await self._client.get_json(path)
        quote = parse_envelope(self.name, SpotQuote, body)
        points = normalize_points(
            [quote], params.external_id, lambda q: (q.fechaActualizacion, q.venta)
        )
        logger.info("Fetched %s spot for %s (%d points)", kind, params.external_id, len(points))
        return build_result(self.name, points)

    async def get_available_series(self) -> list[AvailableSeries]:
        return [
            AvailableSeries(
                id=f"{_ROUTING_PREFIX}{kind}_ars",
                title=title,
                description=f"USD/ARS {kind} spot rate",
                frequency=Frequency.DAILY.value,
            )
            for kind, (_, title) in RATE_ENDPOINTS.items()
        ]
