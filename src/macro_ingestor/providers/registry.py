"""Assemble providers and the chain from configuration.

Nothing here is a module-level singleton: each call builds fresh clients,
and whoever receives the chain owns it and must ``await chain.close()``.
"""

from __future__ import annotations

from datetime import date, datetime

import httpx

from macro_ingestor.core.config import (
    BCRA_CAMBIARIAS,
    BCRA_MONETARIAS,
    DATOS_SERIES,
    DOLARAPI,
    IngestorConfig,
)
from macro_ingestor.providers.base import SeriesProvider
from macro_ingestor.providers.bcra_cambiarias import BcraCambiariasProvider
from macro_ingestor.providers.bcra_monetarias import BcraMonetariasProvider
from macro_ingestor.providers.bcra_oficial import BcraOficialProvider
from macro_ingestor.providers.chain import ProviderChain
from macro_ingestor.providers.datos_series import DatosSeriesProvider
from macro_ingestor.providers.dolarapi import DolarApiProvider
from macro_ingestor.providers.http import SourceClient


def build_providers(
    config: IngestorConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[SeriesProvider]:
    """Instantiate every known provider, in default fallback order."""
    sources, http = config.sources, config.http
    page_size = config.providers.page_size
    tz = config.pipeline.tz

    def today() -> date:
        return datetime.now(tz).date()

    monetarias = BcraMonetariasProvider(
        SourceClient(BCRA_MONETARIAS, sources.bcra, http, transport), page_size
    )
    cambiarias = BcraCambiariasProvider(
        SourceClient(BCRA_CAMBIARIAS, sources.bcra_cambiarias, http, transport), page_size
    )
    datos = DatosSeriesProvider(
        SourceClient(DATOS_SERIES, sources.datos_series, http, transport), page_size
    )
    dolarapi = DolarApiProvider(SourceClient(DOLARAPI, sources.dolarapi, http, transport))
    oficial = BcraOficialProvider(cambiarias, datos, dolarapi, today=today)

    return [monetarias, cambiarias, datos, dolarapi, oficial]


def build_chain(
    config: IngestorConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderChain:
    """Build a ProviderChain wired according to ``config.providers``."""
    return ProviderChain(
        build_providers(config, transport),
        primary=config.providers.primary,
        fallbacks=config.providers.fallbacks,
        health_ttl_seconds=config.providers.health_ttl_seconds,
    )
