"""Canonical <-> provider-native series identifier translation."""

from __future__ import annotations

import logging
import time
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class MappingRepository(Protocol):
    """Read side of the series_mappings table."""

    async def get_internal_series_id(
        self, external_series_id: str, provider_name: str
    ) -> str | None: ...
    async def get_external_series_id(
        self, internal_series_id: str, provider_name: str
    ) -> str | None: ...


class SeriesIdResolver:
    """Resolve ids through SeriesMapping rows, falling back to identity.

    A missing mapping is not an error: the input id is returned unchanged,
    since most providers use the same id as the canonical one. Both hits
    and identity fallbacks are memoized per ``"{id}:{provider}"``.

    Parameters
    ----------
    repository : MappingRepository
        Mapping lookups, normally the SqliteStore.
    cache_ttl_seconds : float | None
        Entry lifetime. None keeps entries for the life of the resolver.
    """

    def __init__(
        self,
        repository: MappingRepository,
        cache_ttl_seconds: float | None = None,
    ) -> None:
        self._repository = repository
        self._ttl = cache_ttl_seconds
        self._to_internal: dict[str, tuple[float, str]] = {}
        self._to_external: dict[str, tuple[float, str]] = {}

    async def resolve_to_internal_id(self, external_id: str, provider_name: str) -> str:
        key = f"{external_id}:{provider_name}"
        cached = self._lookup(self._to_internal, key)
        if cached is not None:
            return cached

        mapped = await self._repository.get_internal_series_id(external_id, provider_name)
        resolved = mapped if mapped is not None else external_id
        if mapped is None:
            logger.debug("No mapping for %s on %s, using identity", external_id, provider_name)
        self._to_internal[key] = (time.monotonic(), resolved)
        return resolved

    async def resolve_to_external_id(self, internal_id: str, provider_name: str) -> str:
        key = f"{internal_id}:{provider_name}"
        cached = self._lookup(self._to_external, key)
        if cached is not None:
            return cached

        mapped = await self._repository.get_external_series_id(internal_id, provider_name)
        resolved = mapped if mapped is not None else internal_id
        if mapped is None:
            logger.debug("No mapping for %s on %s, using identity", internal_id, provider_name)
        self._to_external[key] = (time.monotonic(), resolved)
        return resolved

    def clear_cache(self) -> None:
        self._to_internal.clear()
        self._to_external.clear()

    def _lookup(self, cache: dict[str, tuple[float, str]], key: str) -> str | None:
        entry = cache.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._ttl is not None and time.monotonic() - stored_at >= self._ttl:
            del cache[key]
            return None
        return value
