"""Integration test fixtures: real adapters, chain and SQLite file; HTTP mocked by respx."""

from __future__ import annotations

from pathlib import Path

import pytest

from macro_ingestor.core.config import (
    HttpConfig,
    IngestorConfig,
    ProvidersConfig,
    SourceConfig,
    SourcesConfig,
    StorageConfig,
)
from macro_ingestor.providers import build_chain
from macro_ingestor.storage import SqliteStore

BCRA = "https://bcra.test"
FX = "https://bcra.test/estadisticascambiarias/v1.0"
DATOS = "https://datos.test/series/api"
DOLAR = "https://dolar.test/v1"


@pytest.fixture
def integration_config(tmp_path: Path) -> IngestorConfig:
    return IngestorConfig(
        storage=StorageConfig(sqlite_path=str(tmp_path / "integration.db")),
        http=HttpConfig(retries=1, backoff_base_seconds=0.0, backoff_max_seconds=0.0),
        sources=SourcesConfig(
            bcra=SourceConfig(base_url=BCRA, rate_limit=100),
            bcra_cambiarias=SourceConfig(base_url=FX, rate_limit=100),
            datos_series=SourceConfig(base_url=DATOS, rate_limit=100),
            dolarapi=SourceConfig(base_url=DOLAR, rate_limit=100),
        ),
        providers=ProvidersConfig(page_size=1000),
    )


@pytest.fixture
async def integration_store(integration_config: IngestorConfig) -> SqliteStore:
    store = SqliteStore(integration_config.storage)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def integration_chain(integration_config: IngestorConfig):
    chain = build_chain(integration_config)
    yield chain
    await chain.close()
