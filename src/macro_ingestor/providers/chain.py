"""Provider chain: picks a source per series, health-gates it, fails over."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence

from macro_ingestor.core.config import (
    BCRA_CAMBIARIAS,
    BCRA_MONETARIAS,
    BCRA_OFICIAL,
    DATOS_SERIES,
    DOLARAPI,
)
from macro_ingestor.core.exceptions import ProvidersExhaustedError
from macro_ingestor.core.models import FetchRangeParams, FetchRangeResult, ProviderHealth
from macro_ingestor.providers.base import SeriesProvider

logger = logging.getLogger(__name__)

# id prefix -> provider, first match wins
DEFAULT_PREFIX_ROUTES: tuple[tuple[str, str], ...] = (
    ("dolarapi.", DOLARAPI),
    ("oficial.", BCRA_OFICIAL),
    ("bcra.", BCRA_MONETARIAS),
    ("fx.", BCRA_CAMBIARIAS),
    ("indec.", DATOS_SERIES),
)

# e.g. 143.3_NO_PR_2004_A_21:IPC, 168.1_T_CAMBIOR_D_0_0_26
_DATOS_ID = re.compile(r"^\d+\.\d+_")


class ProviderChain:
    """Ordered failover across registered SeriesProviders.

    One fetch is one pass over ``candidates(external_id)``. A provider is
    skipped when unregistered or unhealthy, abandoned when its fetch
    raises, and its result is returned as soon as a fetch succeeds, even an
    empty one.

    Parameters
    ----------
    providers : Iterable[SeriesProvider]
        Registered providers, keyed by ``name``. Registration order is the
        default fallback order.
    primary : str
        Suggestion used when no routing rule matches.
    fallbacks : Sequence[str] | None
        Explicit fallback order. Defaults to every registered provider
        except the primary.
    health_ttl_seconds : float
        Reuse a provider's health verdict for this long before probing
        again. 0 probes before every fetch.
    """

    def __init__(
        self,
        providers: Iterable[SeriesProvider],
        primary: str,
        fallbacks: Sequence[str] | None = None,
        routes: Sequence[tuple[str, str]] = DEFAULT_PREFIX_ROUTES,
        health_ttl_seconds: float = 0.0,
    ) -> None:
        self._providers: dict[str, SeriesProvider] = {}
        for provider in providers:
            self._providers[provider.name] = provider
        self._primary = primary
        self._fallbacks = (
            list(fallbacks)
            if fallbacks is not None
            else [name for name in self._providers if name != primary]
        )
        self._routes = tuple(routes)
        self._health_ttl = health_ttl_seconds
        self._health_cache: dict[str, tuple[float, ProviderHealth]] = {}

        logger.info(
            "Provider chain initialized: primary=%s fallbacks=%s registered=%s",
            self._primary, self._fallbacks, list(self._providers),
        )

    @property
    def providers(self) -> list[str]:
        return list(self._providers)

    @property
    def primary(self) -> str:
        return self._primary

    def get_provider(self, name: str) -> SeriesProvider | None:
        return self._providers.get(name)

    def suggest_provider(self, external_id: str) -> str:
        """Pick the provider most likely to serve ``external_id``."""
        for prefix, provider in self._routes:
            if external_id.startswith(prefix):
                return provider
        if external_id.isdigit():
            return BCRA_MONETARIAS
        if _DATOS_ID.match(external_id):
            return DATOS_SERIES
        return self._primary

    def candidates(self, external_id: str) -> list[str]:
        """Suggested provider, then the fallbacks other than it.

        The primary is only tried when it is suggested or listed as a
        fallback.
        """
        suggested = self.suggest_provider(external_id)
        return [suggested, *(f for f in self._fallbacks if f != suggested)]

    async def fetch_range(
        self,
        params: FetchRangeParams,
        resolve: Callable[[str], Awaitable[str]] | None = None,
    ) -> FetchRangeResult:
        """Fetch from the first healthy candidate that does not raise.

        ``params.external_id`` drives routing. When ``resolve`` is given it
        is called with each candidate's name and returns the id that
        provider knows the series by; its errors propagate.

        Raises:
            ProvidersExhaustedError: Every candidate was unregistered,
                unhealthy or failed. Chained to the last recorded error.
        """
        order = self.candidates(params.external_id)
        logger.info(
            "Fetching %s [%s..%s] via %s",
            params.external_id, params.start, params.end or "latest", order,
        )

        last_error: Exception | None = None
        for name in order:
            provider = self._providers.get(name)
            if provider is None:
                logger.warning("Provider %s not registered, skipping", name)
                continue

            candidate_params = params
            if resolve is not None:
                native_id = await resolve(name)
                if native_id != params.external_id:
                    candidate_params = params.model_copy(update={"external_id": native_id})

            try:
                health = await self._health(provider)
                if not health.is_healthy:
                    logger.warning(
                        "Provider %s is unhealthy (%s), skipping", name, health.error
                    )
                    continue

                result = await provider.fetch_range(candidate_params)
            except Exception as e:
                last_error = e
                logger.warning(
                    "Provider %s failed for %s: %s: %s",
                    name, params.external_id, type(e).__name__, e,
                )
                self._health_cache.pop(name, None)
                continue

            logger.info(
                "Provider %s returned %d points for %s",
                name, len(result.points), params.external_id,
            )
            return result

        logger.error(
            "All providers failed for %s: tried=%s last_error=%s",
            params.external_id, order, last_error,
        )
        raise ProvidersExhaustedError(
            f"All providers failed for {params.external_id}"
            + (f": {last_error}" if last_error is not None else ""),
            context={
                "external_id": params.external_id,
                "providers_tried": order,
                "last_error": str(last_error) if last_error is not None else None,
            },
            last_error=last_error,
        ) from last_error

    async def get_health_status(self) -> dict[str, ProviderHealth]:
        """Probe every registered provider concurrently. Never raises."""
        names = list(self._providers)
        results = await asyncio.gather(
            *(self._providers[name].health() for name in names),
            return_exceptions=True,
        )

        status: dict[str, ProviderHealth] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Health probe for %s raised: %s", name, result)
                status[name] = ProviderHealth(is_healthy=False, error=str(result))
            else:
                status[name] = result

        healthy = sum(1 for h in status.values() if h.is_healthy)
        logger.info("Provider health: %d/%d healthy", healthy, len(status))
        return status

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()

    async def _health(self, provider: SeriesProvider) -> ProviderHealth:
        if self._health_ttl <= 0:
            return await provider.health()

        now = time.monotonic()
        cached = self._health_cache.get(provider.name)
        if cached is not None and now - cached[0] < self._health_ttl:
            return cached[1]
        health = await provider.health()
        self._health_cache[provider.name] = (now, health)
        return health
