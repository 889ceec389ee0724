"""Composite official USD/ARS rate with its own three-tier failover.

Tiers, tried in order for every fetch:

1. BCRA FX quotes, USD, full range.
2. datos.gob.ar series ``168.1_T_CAMBIOR_D_0_0_26``, full range.
3. dolarapi official spot, only when the range includes today.

A tier that raises or returns nothing hands over to the next one. This
failover is internal; the outer ProviderChain sees one provider.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from zoneinfo import ZoneInfo

from macro_ingestor.core.config import BCRA_OFICIAL
from macro_ingestor.core.exceptions import ProviderError, ProvidersExhaustedError
from macro_ingestor.core.models import (
    AvailableSeries,
    FetchRangeParams,
    FetchRangeResult,
    Frequency,
    ProviderHealth,
    SeriesPoint,
)
from macro_ingestor.providers.base import build_result
from macro_ingestor.providers.bcra_cambiarias import BcraCambiariasProvider
from macro_ingestor.providers.datos_series import DatosSeriesProvider
from macro_ingestor.providers.dolarapi import DolarApiProvider

logger = logging.getLogger(__name__)

DATOS_OFFICIAL_USD_ID = "168.1_T_CAMBIOR_D_0_0_26"
DOLARAPI_OFFICIAL_ID = "dolarapi.oficial_ars"
OFFICIAL_USD_SERIES_ID = "oficial.usd_ars"

_DEFAULT_TZ = ZoneInfo("America/Argentina/Buenos_Aires")


class BcraOficialProvider:
    """Official USD rate assembled from three independent sources."""

    name = BCRA_OFICIAL

    def __init__(
        self,
        cambiarias: BcraCambiariasProvider,
        datos: DatosSeriesProvider,
        dolarapi: DolarApiProvider,
        today: Callable[[], date] | None = None,
    ) -> None:
        self._cambiarias = cambiarias
        self._datos = datos
        self._dolarapi = dolarapi
        self._today = today or (lambda: datetime.now(_DEFAULT_TZ).date())

    async def close(self) -> None:
        # tier providers are owned by the registry and closed there
        return None

    async def health(self) -> ProviderHealth:
        """Healthy if any tier is healthy; tiers are probed in order."""
        errors: list[str] = []
        total_ms = 0.0
        for tier in (self._cambiarias, self._datos, self._dolarapi):
            health = await tier.health()
            total_ms += health.response_time_ms or 0.0
            if health.is_healthy:
                return ProviderHealth(is_healthy=True, response_time_ms=total_ms)
            errors.append(f"{tier.name}: {health.error or 'unhealthy'}")
        return ProviderHealth(
            is_healthy=False, response_time_ms=total_ms, error="; ".join(errors)
        )

    async def fetch_range(self, params: FetchRangeParams) -> FetchRangeResult:
        today = self._today()
        end = params.end or max(today, params.start)
        tiers: list[tuple[str, Callable[[], Awaitable[FetchRangeResult]]]] = [
            (
                self._cambiarias.name,
                lambda: self._cambiarias.fetch_range(
                    FetchRangeParams(external_id="USD", start=params.start, end=end)
                ),
            ),
            (
                self._datos.name,
                lambda: self._datos.fetch_range(
                    FetchRangeParams(
                        external_id=DATOS_OFFICIAL_USD_ID, start=params.start, end=end
                    )
                ),
            ),
        ]
        if params.start <= today <= end:
            tiers.append(
                (
                    self._dolarapi.name,
                    lambda: self._dolarapi.fetch_range(
                        FetchRangeParams(external_id=DOLARAPI_OFFICIAL_ID, start=today)
                    ),
                )
            )

        errors: dict[str, str] = {}
        for tier_name, fetch in tiers:
            try:
                result = await fetch()
            except ProviderError as e:
                logger.warning("%s tier %s failed, trying next: %s", self.name, tier_name, e)
                errors[tier_name] = str(e)
                continue
            if not result.points:
                logger.info("%s tier %s returned no points, trying next", self.name, tier_name)
                errors[tier_name] = "empty result"
                continue

            points = [_relabel(p, params.external_id) for p in result.points]
            logger.info(
                "Fetched %d official USD points for %s via %s",
                len(points), params.external_id, tier_name,
            )
            return build_result(self.name, points)

        logger.error(
            "All official USD tiers failed for %s (%s..%s)",
            params.external_id, params.start, end,
        )
        raise ProvidersExhaustedError(
            "All official USD providers failed",
            context={
                "external_id": params.external_id,
                "providers_tried": [name for name, _ in tiers],
                "tier_errors": errors,
            },
        )

    async def get_available_series(self) -> list[AvailableSeries]:
        return [
            AvailableSeries(
                id=OFFICIAL_USD_SERIES_ID,
                title="Dólar oficial (BCRA)",
                description="Official wholesale USD/ARS rate with multi-source failover",
                frequency=Frequency.DAILY.value,
            )
        ]


def _relabel(point: SeriesPoint, series_id: str) -> SeriesPoint:
    if point.series_id == series_id:
        return point
    return point.model_copy(update={"series_id": series_id})
