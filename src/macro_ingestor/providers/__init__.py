"""Upstream adapters, the provider chain and the identifier resolver."""

from macro_ingestor.providers.base import SeriesProvider
from macro_ingestor.providers.bcra_cambiarias import BcraCambiariasProvider
from macro_ingestor.providers.bcra_monetarias import BcraMonetariasProvider
from macro_ingestor.providers.bcra_oficial import BcraOficialProvider
from macro_ingestor.providers.chain import ProviderChain
from macro_ingestor.providers.datos_series import DatosSeriesProvider
from macro_ingestor.providers.dolarapi import DolarApiProvider
from macro_ingestor.providers.http import SourceClient
from macro_ingestor.providers.registry import build_chain, build_providers
from macro_ingestor.providers.resolver import MappingRepository, SeriesIdResolver

__all__ = [
    "SeriesProvider",
    "SourceClient",
    "BcraMonetariasProvider",
    "BcraCambiariasProvider",
    "DatosSeriesProvider",
    "DolarApiProvider",
    "BcraOficialProvider",
    "ProviderChain",
    "MappingRepository",
    "SeriesIdResolver",
    "build_providers",
    "build_chain",
]
