"""Foundation types, config, normalization and exceptions."""

from macro_ingestor.core.config import (
    APIConfig,
    HttpConfig,
    IngestorConfig,
    PipelineConfig,
    ProvidersConfig,
    ResolverConfig,
    SourceConfig,
    SourcesConfig,
    StorageConfig,
    load_config,
)
from macro_ingestor.core.exceptions import (
    ConfigError,
    MacroIngestorError,
    ProviderError,
    ProvidersExhaustedError,
    RateLimitError,
    StorageError,
)
from macro_ingestor.core.models import (
    AvailableSeries,
    FetchRangeParams,
    FetchRangeResult,
    Frequency,
    IngestResult,
    ProviderHealth,
    ProviderName,
    SeriesId,
    SeriesMapping,
    SeriesMetadata,
    SeriesPoint,
    SeriesSource,
    SeriesStats,
)
from macro_ingestor.core.normalize import normalize_points, parse_date, parse_value

__all__ = [
    # Type aliases
    "SeriesId",
    "ProviderName",
    # Enums
    "SeriesSource",
    "Frequency",
    # Series models
    "SeriesPoint",
    "SeriesMetadata",
    "SeriesMapping",
    "SeriesStats",
    # Provider models
    "ProviderHealth",
    "FetchRangeParams",
    "FetchRangeResult",
    "AvailableSeries",
    # Pipeline models
    "IngestResult",
    # Normalization
    "parse_date",
    "parse_value",
    "normalize_points",
    # Config
    "IngestorConfig",
    "StorageConfig",
    "HttpConfig",
    "SourceConfig",
    "SourcesConfig",
    "ProvidersConfig",
    "ResolverConfig",
    "PipelineConfig",
    "APIConfig",
    "load_config",
    # Exceptions
    "MacroIngestorError",
    "ConfigError",
    "ProviderError",
    "RateLimitError",
    "ProvidersExhaustedError",
    "StorageError",
]
