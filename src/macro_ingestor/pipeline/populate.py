"""Populate series metadata from a provider's discovery catalogue.

Each stored mapping for the provider is matched against the provider's
available series by external id; matched series get a metadata row (or
have their existing metadata merged), unmatched mappings are skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from macro_ingestor.core.config import (
    BCRA_CAMBIARIAS,
    BCRA_MONETARIAS,
    BCRA_OFICIAL,
    DATOS_SERIES,
    DOLARAPI,
)
from macro_ingestor.core.models import (
    AvailableSeries,
    Frequency,
    SeriesMapping,
    SeriesMetadata,
    SeriesSource,
)
from macro_ingestor.providers.base import SeriesProvider
from macro_ingestor.storage.store import SqliteStore

logger = logging.getLogger(__name__)

PROVIDER_SOURCES: dict[str, SeriesSource] = {
    BCRA_MONETARIAS: SeriesSource.CENTRAL_BANK_MONETARY,
    BCRA_CAMBIARIAS: SeriesSource.CENTRAL_BANK_FX,
    BCRA_OFICIAL: SeriesSource.CENTRAL_BANK_FX,
    DOLARAPI: SeriesSource.CENTRAL_BANK_FX,
    DATOS_SERIES: SeriesSource.STATISTICS_AGENCY,
}

_UNIT_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("dólar", "dolar", "usd"), "USD"),
    (("porcentaje", "%", "tasa"), "percent"),
    (("índice", "indice", "index"), "index"),
    (("peso", "ars"), "ARS"),
]


def infer_unit(title: str) -> str:
    """Guess a unit from a catalogue title; ARS when nothing matches."""
    lowered = title.lower()
    for keywords, unit in _UNIT_KEYWORDS:
        if any(k in lowered for k in keywords):
            return unit
    return "ARS"


def _frequency(raw: str | None) -> Frequency:
    try:
        return Frequency(raw) if raw else Frequency.DAILY
    except ValueError:
        return Frequency.DAILY


@dataclass
class PopulateResult:
    success: bool = True
    populated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


class PopulateSeries:
    def __init__(
        self,
        store: SqliteStore,
        provider: SeriesProvider,
        source: SeriesSource | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._source = source or PROVIDER_SOURCES.get(
            provider.name, SeriesSource.CENTRAL_BANK_MONETARY
        )

    async def execute(self) -> PopulateResult:
        result = PopulateResult()
        try:
            mappings = await self._store.list_mappings(self._provider.name)
            available = await self._provider.get_available_series()
        except Exception as e:
            logger.error("Populate failed for %s: %s", self._provider.name, e)
            return PopulateResult(success=False, errors=[str(e)])

        catalogue = {s.id: s for s in available}
        logger.info(
            "Populating %d mappings for %s against %d available series",
            len(mappings), self._provider.name, len(catalogue),
        )

        for mapping in mappings:
            match = catalogue.get(mapping.external_series_id)
            if match is None:
                logger.debug("No catalogue entry for %s", mapping.external_series_id)
                result.skipped += 1
                continue
            try:
                await self._populate_one(mapping, match)
                result.populated += 1
            except Exception as e:
                logger.warning("Could not populate %s: %s", mapping.internal_series_id, e)
                result.errors.append(f"{mapping.internal_series_id}: {e}")

        result.success = not result.errors
        return result

    async def _populate_one(self, mapping: SeriesMapping, match: AvailableSeries) -> None:
        extra = {
            "title": match.title,
            "description": match.description or mapping.description,
            "provider": self._provider.name,
            "provider_series_id": match.id,
            "populated_at": datetime.now(timezone.utc).isoformat(),
        }
        existing = await self._store.get_series_metadata(mapping.internal_series_id)
        if existing is not None:
            await self._store.update_series_metadata(
                mapping.internal_series_id, {**existing.metadata, **extra}
            )
            return

        await self._store.upsert_series_metadata(
            SeriesMetadata(
                id=mapping.internal_series_id,
                source=self._source,
                frequency=_frequency(match.frequency),
                unit=infer_unit(match.title),
                metadata=extra,
            )
        )
