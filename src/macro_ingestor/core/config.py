"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from macro_ingestor.core.exceptions import ConfigError

# Provider names, as registered on the chain
BCRA_MONETARIAS = "BCRA_MONETARIAS"
BCRA_CAMBIARIAS = "BCRA_CAMBIARIAS"
DATOS_SERIES = "DATOS_SERIES"
DOLARAPI = "DOLARAPI"
BCRA_OFICIAL = "BCRA_OFICIAL"

KNOWN_PROVIDERS = (BCRA_MONETARIAS, BCRA_CAMBIARIAS, DATOS_SERIES, DOLARAPI, BCRA_OFICIAL)


class StorageConfig(BaseModel):
    """SQLite storage configuration."""

    model_config = ConfigDict(frozen=True)

    sqlite_path: str = "./data/macro_ingestor.db"


class HttpConfig(BaseModel):
    """Retry/backoff policy shared by every upstream client."""

    model_config = ConfigDict(frozen=True)

    timeout: float = 30.0
    retries: int = 3
    backoff_base_seconds: float = 0.25
    backoff_factor: float = 2.0
    backoff_max_seconds: float = 8.0

    @field_validator("retries")
    @classmethod
    def retries_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("retries must be >= 0")
        return v

    @field_validator("timeout")
    @classmethod
    def timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be > 0")
        return v


class SourceConfig(BaseModel):
    """Connection settings for one upstream API."""

    model_config = ConfigDict(frozen=True)

    base_url: str
    rate_limit: int = 5
    verify_ssl: bool = True

    @field_validator("base_url")
    @classmethod
    def base_url_is_http(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {v!r}")
        return v.rstrip("/")

    @field_validator("rate_limit")
    @classmethod
    def rate_limit_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("rate_limit must be >= 1")
        return v


class SourcesConfig(BaseModel):
    """Base URLs of the upstream sources."""

    model_config = ConfigDict(frozen=True)

    bcra: SourceConfig = SourceConfig(base_url="https://api.bcra.gob.ar")
    bcra_cambiarias: SourceConfig = SourceConfig(
        base_url="https://api.bcra.gob.ar/estadisticascambiarias/v1.0"
    )
    datos_series: SourceConfig = SourceConfig(base_url="https://apis.datos.gob.ar/series/api")
    dolarapi: SourceConfig = SourceConfig(base_url="https://dolarapi.com/v1")

    @model_validator(mode="before")
    @classmethod
    def fill_source_defaults(cls, data: object) -> object:
        # a partial override (e.g. only verify_ssl from env) keeps the default base_url
        if not isinstance(data, dict):
            return data
        merged = dict(data)
        for name, field in cls.model_fields.items():
            override = merged.get(name)
            if isinstance(override, dict):
                merged[name] = {**field.default.model_dump(), **override}
        return merged


class ProvidersConfig(BaseModel):
    """Provider chain ordering and paging."""

    model_config = ConfigDict(frozen=True)

    primary: str = BCRA_MONETARIAS
    fallbacks: list[str] | None = None
    page_size: int = 1000
    health_ttl_seconds: float = 0.0

    @field_validator("primary")
    @classmethod
    def primary_known(cls, v: str) -> str:
        if v not in KNOWN_PROVIDERS:
            raise ValueError(f"primary must be one of {KNOWN_PROVIDERS}, got {v!r}")
        return v

    @field_validator("fallbacks", mode="before")
    @classmethod
    def split_fallbacks(cls, v: object) -> object:
        # env vars arrive as "A,B,C"
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    @field_validator("fallbacks")
    @classmethod
    def fallbacks_known(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        unknown = [p for p in v if p not in KNOWN_PROVIDERS]
        if unknown:
            raise ValueError(f"unknown fallback providers: {unknown}")
        return v

    @field_validator("page_size")
    @classmethod
    def page_size_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("page_size must be >= 1")
        return v

    @field_validator("health_ttl_seconds")
    @classmethod
    def ttl_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("health_ttl_seconds must be >= 0")
        return v


class ResolverConfig(BaseModel):
    """Identifier resolver cache settings. None means cache for process lifetime."""

    model_config = ConfigDict(frozen=True)

    cache_ttl_seconds: float | None = None


class PipelineConfig(BaseModel):
    """Update/backfill use case settings."""

    model_config = ConfigDict(frozen=True)

    series_whitelist: list[str] = []
    max_concurrent: int = 4
    default_lookback_days: int = 1
    timezone: str = "America/Argentina/Buenos_Aires"

    @field_validator("series_whitelist", mode="before")
    @classmethod
    def split_whitelist(cls, v: object) -> object:
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        if isinstance(v, (int, float)):
            return [str(v)]
        return v

    @field_validator("max_concurrent")
    @classmethod
    def max_concurrent_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrent must be >= 1")
        return v

    @field_validator("default_lookback_days")
    @classmethod
    def lookback_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("default_lookback_days must be >= 0")
        return v

    @field_validator("timezone")
    @classmethod
    def timezone_exists(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone {v!r}") from e
        return v

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 8000
    api_key: str | None = None


class LoggingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def level_known(cls, v: str) -> str:
        upper = v.upper()
        if upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {v!r}")
        return upper


class IngestorConfig(BaseModel):
    """Root configuration for the entire macro-ingestor system."""

    model_config = ConfigDict(frozen=True)

    storage: StorageConfig = StorageConfig()
    http: HttpConfig = HttpConfig()
    sources: SourcesConfig = SourcesConfig()
    providers: ProvidersConfig = ProvidersConfig()
    resolver: ResolverConfig = ResolverConfig()
    pipeline: PipelineConfig = PipelineConfig()
    api: APIConfig = APIConfig()
    logging: LoggingConfig = LoggingConfig()

    @model_validator(mode="after")
    def primary_not_in_fallbacks(self) -> IngestorConfig:
        fallbacks = self.providers.fallbacks or []
        if self.providers.primary in fallbacks:
            raise ValueError("providers.primary must not also be listed in providers.fallbacks")
        return self


def load_config(
    config_path: str | None = None,
    env_prefix: str = "MACRO_INGESTOR_",
) -> IngestorConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (MACRO_INGESTOR_STORAGE__SQLITE_PATH, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        MACRO_INGESTOR_PROVIDERS__PAGE_SIZE=500  ->  providers.page_size = 500
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return IngestorConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("MACRO_INGESTOR_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from MACRO_INGESTOR_CONFIG not found: {env_path}",
                context={"field": "MACRO_INGESTOR_CONFIG", "value": env_path},
            )
        return p

    default = Path("macro-ingestor.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels. Nested dicts from the YAML
    file are copied before being written to.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = [p.lower() for p in key[len(prefix) :].split("__")]
        if parts == ["config"]:
            continue

        target = result
        for part in parts[:-1]:
            existing = target.get(part)
            target[part] = dict(existing) if isinstance(existing, dict) else {}
            target = target[part]
        target[parts[-1]] = value if _is_string_field(parts) else _auto_cast(value)

    return result


def _is_string_field(parts: list[str]) -> bool:
    """True when the config path names a ``str`` (or optional ``str``) field."""
    model: type[BaseModel] = IngestorConfig
    for part in parts[:-1]:
        field = model.model_fields.get(part)
        if field is None or not (
            isinstance(field.annotation, type) and issubclass(field.annotation, BaseModel)
        ):
            return False
        model = field.annotation
    field = model.model_fields.get(parts[-1])
    return field is not None and field.annotation in (str, str | None)


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
