"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from macro_ingestor.api.deps import AppState, api_key_middleware
from macro_ingestor.api.routes import router
from macro_ingestor.core.config import IngestorConfig, load_config
from macro_ingestor.core.exceptions import (
    ConfigError,
    MacroIngestorError,
    ProviderError,
    StorageError,
)
from macro_ingestor.providers.registry import build_chain
from macro_ingestor.providers.resolver import SeriesIdResolver
from macro_ingestor.storage.store import create_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = app.state._pending_config or load_config()
    store = await create_store(config.storage)
    chain = build_chain(config)
    resolver = SeriesIdResolver(store, cache_ttl_seconds=config.resolver.cache_ttl_seconds)

    app.state.app_state = AppState(
        config=config, store=store, chain=chain, resolver=resolver, jobs={}
    )
    logger.info("API started (primary provider: %s)", chain.primary)

    yield

    await chain.close()
    await store.close()


def _status_for(exc: MacroIngestorError) -> int:
    if isinstance(exc, ConfigError):
        return 400
    if isinstance(exc, ProviderError):
        return 502
    if isinstance(exc, StorageError):
        return 500
    return 500


def create_app(config: IngestorConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    import macro_ingestor

    app = FastAPI(
        title="Macro Ingestor API",
        description="Argentine macroeconomic time-series ingestion",
        version=macro_ingestor.__version__,
        lifespan=lifespan,
    )

    # Stash config so lifespan can retrieve it
    app.state._pending_config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if config and config.api.api_key:
        app.middleware("http")(api_key_middleware)

    app.include_router(router, prefix="/api")

    @app.exception_handler(MacroIngestorError)
    async def ingestor_exception_handler(request: Request, exc: MacroIngestorError):
        return JSONResponse(
            status_code=_status_for(exc),
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    return app
