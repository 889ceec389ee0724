"""Discover provider-native ids for canonical series by keyword matching.

Each criterion names a canonical series and the keywords its catalogue
title should contain. The first catalogue entry whose title contains any
keyword (case-insensitive) becomes that series' mapping on the provider.
Catalogue or storage failures propagate to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from macro_ingestor.core.models import AvailableSeries, SeriesMapping, SeriesSource
from macro_ingestor.providers.base import SeriesProvider
from macro_ingestor.storage.store import SqliteStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveryCriterion:
    series_id: str
    keywords: tuple[str, ...]
    description: str


DEFAULT_DISCOVERY_CRITERIA: tuple[DiscoveryCriterion, ...] = (
    DiscoveryCriterion(
        series_id="1",
        keywords=("reservas internacionales", "reservas", "international reserves"),
        description="Reservas Internacionales del BCRA (en millones de dólares)",
    ),
    DiscoveryCriterion(
        series_id="15",
        keywords=("base monetaria", "monetary base", "base monetaria - total"),
        description="Base monetaria - Total (en millones de pesos)",
    ),
)


@dataclass
class DiscoveredSeries:
    series_id: str
    external_id: str
    description: str
    created: bool


@dataclass
class UnmappedSeries:
    series_id: str
    source: str
    reason: str


@dataclass
class DiscoveryResult:
    mapped: list[DiscoveredSeries] = field(default_factory=list)
    unmapped: list[UnmappedSeries] = field(default_factory=list)


def find_matching_series(
    catalogue: Sequence[AvailableSeries], keywords: Sequence[str]
) -> AvailableSeries | None:
    """First catalogue entry whose title contains any of ``keywords``."""
    lowered = [k.lower() for k in keywords]
    for entry in catalogue:
        title = entry.title.lower()
        if any(k in title for k in lowered):
            return entry
    return None


class DiscoverSeries:
    """Record SeriesMappings for the criteria a provider's catalogue satisfies.

    Matched series also get the provider id noted in their metadata map
    when they already have a metadata row. Catalogued series left without
    a mapping on the provider are reported as unmapped.
    """

    def __init__(
        self,
        store: SqliteStore,
        provider: SeriesProvider,
        criteria: Sequence[DiscoveryCriterion] = DEFAULT_DISCOVERY_CRITERIA,
    ) -> None:
        self._store = store
        self._provider = provider
        self._criteria = tuple(criteria)

    async def execute(self) -> DiscoveryResult:
        name = self._provider.name
        catalogue = await self._provider.get_available_series()
        logger.info("Discovering %d series against %d %s entries",
                    len(self._criteria), len(catalogue), name)

        result = DiscoveryResult()
        for criterion in self._criteria:
            match = find_matching_series(catalogue, criterion.keywords)
            if match is None:
                logger.info("No %s match for %s (keywords=%s)",
                            name, criterion.series_id, list(criterion.keywords))
                result.unmapped.append(
                    UnmappedSeries(criterion.series_id, "unknown", f"No {name} match found")
                )
                continue

            created = await self._store.create_mapping(
                SeriesMapping(
                    internal_series_id=criterion.series_id,
                    external_series_id=match.id,
                    provider_name=name,
                    keywords=list(criterion.keywords),
                    description=criterion.description,
                )
            )
            if not created:
                logger.debug("%s:%s already mapped", name, match.id)
            await self._note_in_metadata(criterion, match)
            logger.info("Mapped %s -> %s:%s (%s)",
                        criterion.series_id, name, match.id, match.title)
            result.mapped.append(
                DiscoveredSeries(criterion.series_id, match.id, criterion.description, created)
            )

        result.unmapped.extend(await self._unmapped_catalogue_series(result))
        logger.info("Discovery on %s done: mapped=%d unmapped=%d",
                    name, len(result.mapped), len(result.unmapped))
        return result

    async def _note_in_metadata(
        self, criterion: DiscoveryCriterion, match: AvailableSeries
    ) -> None:
        existing = await self._store.get_series_metadata(criterion.series_id)
        if existing is None:
            logger.debug("%s has no metadata row yet", criterion.series_id)
            return
        await self._store.update_series_metadata(
            criterion.series_id,
            {
                **existing.metadata,
                "provider": self._provider.name,
                "provider_series_id": match.id,
                "provider_description": criterion.description,
                "last_discovered": datetime.now(timezone.utc).isoformat(),
            },
        )

    async def _unmapped_catalogue_series(self, result: DiscoveryResult) -> list[UnmappedSeries]:
        name = self._provider.name
        mapped_ids = {m.internal_series_id for m in await self._store.list_mappings(name)}
        already = {u.series_id for u in result.unmapped}

        unmapped = []
        for meta in await self._store.list_series_metadata():
            if meta.id in mapped_ids or meta.id in already:
                continue
            if meta.source == SeriesSource.STATISTICS_AGENCY:
                reason = f"Statistics agency series, not served by {name}"
            else:
                reason = f"No {name} mapping found"
            unmapped.append(UnmappedSeries(meta.id, meta.source.value, reason))
        return unmapped
