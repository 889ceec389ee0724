"""Storage backend: Protocol definition, SQLite implementation, factory."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterator, Sequence
from datetime import date
from pathlib import Path
from typing import ClassVar, Protocol, runtime_checkable

import aiosqlite

from macro_ingestor.core.config import StorageConfig
from macro_ingestor.core.exceptions import StorageError
from macro_ingestor.core.models import (
    Frequency,
    SeriesMapping,
    SeriesMetadata,
    SeriesPoint,
    SeriesSource,
    SeriesStats,
)

logger = logging.getLogger(__name__)

UPSERT_BATCH_SIZE = 1000

_UPSERT_POINTS_SQL = """INSERT INTO series_points (series_id, ts, value, metadata_json)
VALUES {rows}
ON CONFLICT(series_id, ts) DO UPDATE SET
    value = excluded.value,
    metadata_json = excluded.metadata_json,
    updated_at = datetime('now')"""


@runtime_checkable
class SeriesRepository(Protocol):
    """Persistence contract for canonical series data."""

    async def get_last_date(self, series_id: str) -> date | None: ...
    async def upsert_points(self, points: Sequence[SeriesPoint]) -> int: ...
    async def get_series_stats(self, series_id: str) -> SeriesStats | None: ...
    async def delete_points_in_range(
        self, series_id: str, start: date, end: date
    ) -> int: ...
    async def get_points(
        self,
        series_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[SeriesPoint]: ...
    async def get_series_metadata(self, series_id: str) -> SeriesMetadata | None: ...
    async def list_series_metadata(self) -> list[SeriesMetadata]: ...
    async def upsert_series_metadata(self, metadata: SeriesMetadata) -> None: ...
    async def update_series_metadata(
        self, series_id: str, metadata: dict
    ) -> bool: ...
    async def initialize(self) -> None: ...
    async def close(self) -> None: ...
    async def health_check(self) -> bool: ...


def batched(
    points: Sequence[SeriesPoint], size: int = UPSERT_BATCH_SIZE
) -> Iterator[Sequence[SeriesPoint]]:
    """Split ``points`` into consecutive slices of at most ``size``."""
    for i in range(0, len(points), size):
        yield points[i : i + size]


class SqliteStore:
    """SQLite implementation of the series and mapping repositories.

    Uses aiosqlite for async access, WAL mode for concurrent reads,
    and a version-tracked migration system. One connection is shared by
    all callers; write transactions are serialized through an asyncio.Lock.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS series (
                    id TEXT PRIMARY KEY,
                    source TEXT NOT NULL,
                    frequency TEXT NOT NULL,
                    unit TEXT,
                    metadata_json TEXT,
                    created_at TEXT DEFAULT (datetime('now')),
                    updated_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS series_points (
                    series_id TEXT NOT NULL,
                    ts TEXT NOT NULL,
                    value REAL NOT NULL,
                    metadata_json TEXT,
                    created_at TEXT DEFAULT (datetime('now')),
                    updated_at TEXT DEFAULT (datetime('now')),
                    UNIQUE(series_id, ts)
                )""",
                """CREATE TABLE IF NOT EXISTS series_mappings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    internal_series_id TEXT NOT NULL,
                    external_series_id TEXT NOT NULL,
                    provider_name TEXT NOT NULL,
                    keywords_json TEXT,
                    description TEXT,
                    created_at TEXT DEFAULT (datetime('now')),
                    UNIQUE(external_series_id, provider_name)
                )""",
                # Indexes
                "CREATE INDEX IF NOT EXISTS idx_points_series_ts ON series_points(series_id, ts)",
                "CREATE INDEX IF NOT EXISTS idx_mappings_internal ON series_mappings(internal_series_id, provider_name)",
                "CREATE INDEX IF NOT EXISTS idx_mappings_provider ON series_mappings(provider_name)",
            ],
        ),
    }

    def __init__(self, config: StorageConfig) -> None:
        self._path = config.sqlite_path
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open connection, enable WAL, run migrations."""
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self._path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            current = await self._get_schema_version()
            await self._apply_migrations(current)
            await self._db.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to initialize SQLite store: {e}",
                context={"operation": "initialize", "path": self._path},
            ) from e

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None
        except Exception:
            return False

    # --- Schema Migration ---

    async def _get_schema_version(self) -> int:
        try:
            async with self._db.execute(
                "SELECT MAX(version) FROM schema_version"
            ) as cursor:
                row = await cursor.fetchone()
            return row[0] if row[0] is not None else 0
        except aiosqlite.OperationalError:
            return 0

    async def _apply_migrations(self, current_version: int) -> None:
        for version in sorted(self._MIGRATIONS.keys()):
            if version <= current_version:
                continue
            desc, statements = self._MIGRATIONS[version]
            logger.info("Applying migration %d: %s", version, desc)
            for sql in statements:
                await self._db.execute(sql)
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )

    # --- Point Operations ---

    async def get_last_date(self, series_id: str) -> date | None:
        """Latest stored ``ts`` for the series, or None if it has no points."""
        try:
            async with self._db.execute(
                "SELECT MAX(ts) FROM series_points WHERE series_id = ?",
                (series_id,),
            ) as cursor:
                row = await cursor.fetchone()
            return date.fromisoformat(row[0]) if row and row[0] else None
        except Exception as e:
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to get last date for {series_id}: {e}",
                context={"operation": "query", "table": "series_points"},
            ) from e

    async def upsert_points(self, points: Sequence[SeriesPoint]) -> int:
        """Insert or update points keyed by ``(series_id, ts)``.

        All batches run in one transaction; a failure rolls back every batch.

        Returns:
            Sum of affected rows over all batches. SQLite counts a row that
            hit the conflict clause as changed, so re-upserting identical
            points reports the full count, not "rows actually modified".
        """
        if not points:
            return 0

        async with self._write_lock:
            try:
                affected = 0
                for batch in batched(points):
                    sql = _UPSERT_POINTS_SQL.format(
                        rows=", ".join(["(?, ?, ?, ?)"] * len(batch))
                    )
                    params: list = []
                    for p in batch:
                        params.extend(
                            (
                                p.series_id,
                                p.ts.isoformat(),
                                p.value,
                                json.dumps(p.metadata) if p.metadata is not None else None,
                            )
                        )
                    cursor = await self._db.execute(sql, params)
                    affected += cursor.rowcount
                    await cursor.close()
                await self._db.commit()
            except Exception as e:
                await self._rollback()
                raise StorageError(
                    f"Failed to upsert {len(points)} points: {e}",
                    context={"operation": "upsert", "table": "series_points"},
                ) from e

        logger.info("Upserted %d points (%d affected rows)", len(points), affected)
        return affected

    async def get_points(
        self,
        series_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[SeriesPoint]:
        try:
            query = "SELECT * FROM series_points WHERE series_id = ?"
            params: list = [series_id]
            if start is not None:
                query += " AND ts >= ?"
                params.append(start.isoformat())
            if end is not None:
                query += " AND ts <= ?"
                params.append(end.isoformat())
            query += " ORDER BY ts ASC"
            async with self._db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_point(r) for r in rows]
        except Exception as e:
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to get points for {series_id}: {e}",
                context={"operation": "query", "table": "series_points"},
            ) from e

    async def get_series_stats(self, series_id: str) -> SeriesStats | None:
        """Aggregate stats, or None when the series has no stored points."""
        try:
            async with self._db.execute(
                """SELECT COUNT(*) AS total_points,
                          MIN(ts) AS first_date, MAX(ts) AS last_date,
                          MIN(value) AS min_value, MAX(value) AS max_value,
                          AVG(value) AS avg_value
                   FROM series_points WHERE series_id = ?""",
                (series_id,),
            ) as cursor:
                row = await cursor.fetchone()
            if row is None or row["total_points"] == 0:
                return None
            return SeriesStats(
                total_points=row["total_points"],
                first_date=date.fromisoformat(row["first_date"]),
                last_date=date.fromisoformat(row["last_date"]),
                min_value=row["min_value"],
                max_value=row["max_value"],
                avg_value=row["avg_value"],
            )
        except Exception as e:
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to get stats for {series_id}: {e}",
                context={"operation": "query", "table": "series_points"},
            ) from e

    async def delete_points_in_range(self, series_id: str, start: date, end: date) -> int:
        """Delete points with ``start <= ts <= end``. Returns rows deleted."""
        async with self._write_lock:
            try:
                cursor = await self._db.execute(
                    "DELETE FROM series_points WHERE series_id = ? AND ts >= ? AND ts <= ?",
                    (series_id, start.isoformat(), end.isoformat()),
                )
                deleted = cursor.rowcount
                await cursor.close()
                await self._db.commit()
            except Exception as e:
                await self._rollback()
                raise StorageError(
                    f"Failed to delete points for {series_id}: {e}",
                    context={"operation": "delete", "table": "series_points"},
                ) from e
        logger.info("Deleted %d points for %s in [%s, %s]", deleted, series_id, start, end)
        return deleted

    # --- Metadata Operations ---

    async def get_series_metadata(self, series_id: str) -> SeriesMetadata | None:
        try:
            async with self._db.execute(
                "SELECT * FROM series WHERE id = ?", (series_id,)
            ) as cursor:
                row = await cursor.fetchone()
            return self._row_to_metadata(row) if row else None
        except Exception as e:
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to get metadata for {series_id}: {e}",
                context={"operation": "query", "table": "series"},
            ) from e

    async def list_series_metadata(self) -> list[SeriesMetadata]:
        try:
            async with self._db.execute("SELECT * FROM series ORDER BY id") as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_metadata(r) for r in rows]
        except Exception as e:
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to list series metadata: {e}",
                context={"operation": "query", "table": "series"},
            ) from e

    async def upsert_series_metadata(self, metadata: SeriesMetadata) -> None:
        async with self._write_lock:
            try:
                await self._db.execute(
                    """INSERT INTO series (id, source, frequency, unit, metadata_json)
                       VALUES (?, ?, ?, ?, ?)
                       ON CONFLICT(id) DO UPDATE SET
                           source = excluded.source,
                           frequency = excluded.frequency,
                           unit = excluded.unit,
                           metadata_json = excluded.metadata_json,
                           updated_at = datetime('now')""",
                    (
                        metadata.id,
                        metadata.source.value,
                        metadata.frequency.value,
                        metadata.unit,
                        json.dumps(metadata.metadata),
                    ),
                )
                await self._db.commit()
            except Exception as e:
                await self._rollback()
                raise StorageError(
                    f"Failed to upsert metadata for {metadata.id}: {e}",
                    context={"operation": "upsert", "table": "series"},
                ) from e

    async def update_series_metadata(self, series_id: str, metadata: dict) -> bool:
        """Replace the open metadata map of an existing series.

        Returns:
            False if the series does not exist.
        """
        async with self._write_lock:
            try:
                cursor = await self._db.execute(
                    """UPDATE series SET metadata_json = ?, updated_at = datetime('now')
                       WHERE id = ?""",
                    (json.dumps(metadata), series_id),
                )
                updated = cursor.rowcount > 0
                await cursor.close()
                await self._db.commit()
                return updated
            except Exception as e:
                await self._rollback()
                raise StorageError(
                    f"Failed to update metadata for {series_id}: {e}",
                    context={"operation": "update", "table": "series"},
                ) from e

    # --- Mapping Operations ---

    async def create_mapping(self, mapping: SeriesMapping) -> bool:
        """Insert a mapping. Returns False if (external id, provider) already exists."""
        async with self._write_lock:
            try:
                cursor = await self._db.execute(
                    """INSERT INTO series_mappings
                       (internal_series_id, external_series_id, provider_name,
                        keywords_json, description)
                       VALUES (?, ?, ?, ?, ?)
                       ON CONFLICT(external_series_id, provider_name) DO NOTHING""",
                    (
                        mapping.internal_series_id,
                        mapping.external_series_id,
                        mapping.provider_name,
                        json.dumps(mapping.keywords),
                        mapping.description,
                    ),
                )
                created = cursor.rowcount > 0
                await cursor.close()
                await self._db.commit()
                return created
            except Exception as e:
                await self._rollback()
                raise StorageError(
                    f"Failed to create mapping for {mapping.external_series_id}: {e}",
                    context={"operation": "insert", "table": "series_mappings"},
                ) from e

    async def get_internal_series_id(
        self, external_series_id: str, provider_name: str
    ) -> str | None:
        return await self._mapping_lookup(
            """SELECT internal_series_id FROM series_mappings
               WHERE external_series_id = ? AND provider_name = ?""",
            (external_series_id, provider_name),
        )

    async def get_external_series_id(
        self, internal_series_id: str, provider_name: str
    ) -> str | None:
        return await self._mapping_lookup(
            """SELECT external_series_id FROM series_mappings
               WHERE internal_series_id = ? AND provider_name = ?
               ORDER BY id ASC LIMIT 1""",
            (internal_series_id, provider_name),
        )

    async def list_mappings(self, provider_name: str | None = None) -> list[SeriesMapping]:
        try:
            query = "SELECT * FROM series_mappings"
            params: list = []
            if provider_name is not None:
                query += " WHERE provider_name = ?"
                params.append(provider_name)
            query += " ORDER BY internal_series_id ASC"
            async with self._db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_mapping(r) for r in rows]
        except Exception as e:
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to list mappings: {e}",
                context={"operation": "query", "table": "series_mappings"},
            ) from e

    # --- Statistics ---

    async def get_statistics(self) -> dict[str, int]:
        """Row counts used by the health endpoint and CLI."""
        try:
            counts: dict[str, int] = {}
            for key, table in (
                ("total_series", "series"),
                ("total_points", "series_points"),
                ("total_mappings", "series_mappings"),
            ):
                async with self._db.execute(f"SELECT COUNT(*) FROM {table}") as cursor:
                    row = await cursor.fetchone()
                counts[key] = row[0]
            return counts
        except Exception as e:
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to gather statistics: {e}",
                context={"operation": "query", "table": "*"},
            ) from e

    # --- Helpers ---

    async def _mapping_lookup(self, sql: str, params: tuple) -> str | None:
        try:
            async with self._db.execute(sql, params) as cursor:
                row = await cursor.fetchone()
            return row[0] if row else None
        except Exception as e:
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to look up mapping: {e}",
                context={"operation": "query", "table": "series_mappings"},
            ) from e

    async def _rollback(self) -> None:
        if self._db is not None and self._db.in_transaction:
            await self._db.rollback()

    @staticmethod
    def _row_to_point(row: aiosqlite.Row) -> SeriesPoint:
        meta_json = row["metadata_json"]
        return SeriesPoint(
            series_id=row["series_id"],
            ts=date.fromisoformat(row["ts"]),
            value=row["value"],
            metadata=json.loads(meta_json) if meta_json else None,
        )

    @staticmethod
    def _row_to_metadata(row: aiosqlite.Row) -> SeriesMetadata:
        meta_json = row["metadata_json"]
        return SeriesMetadata(
            id=row["id"],
            source=SeriesSource(row["source"]),
            frequency=Frequency(row["frequency"]),
            unit=row["unit"],
            metadata=json.loads(meta_json) if meta_json else {},
        )

    @staticmethod
    def _row_to_mapping(row: aiosqlite.Row) -> SeriesMapping:
        keywords_json = row["keywords_json"]
        return SeriesMapping(
            internal_series_id=row["internal_series_id"],
            external_series_id=row["external_series_id"],
            provider_name=row["provider_name"],
            keywords=json.loads(keywords_json) if keywords_json else [],
            description=row["description"],
        )


async def create_store(config: StorageConfig) -> SqliteStore:
    """Create and initialize the SQLite store."""
    store = SqliteStore(config)
    await store.initialize()
    return store
