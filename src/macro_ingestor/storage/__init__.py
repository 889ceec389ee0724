"""Canonical series persistence."""

from macro_ingestor.storage.store import (
    SeriesRepository,
    SqliteStore,
    UPSERT_BATCH_SIZE,
    batched,
    create_store,
)

__all__ = [
    "SeriesRepository",
    "SqliteStore",
    "UPSERT_BATCH_SIZE",
    "batched",
    "create_store",
]
