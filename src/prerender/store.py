"""SQLite durable backing for generated artifacts.

All store operations catch ``aiosqlite.Error`` internally and degrade
gracefully: load failures yield no records (every key starts as a miss),
write failures are logged and ignored (the in-memory cache still holds the
artifact). Infrastructure errors never cross the ArtifactStore boundary.

Records that exist but cannot be decoded raise ``CacheCorruptionError``
internally; the record is dropped and the key is treated as a miss.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import aiosqlite
import structlog
from pydantic import ValidationError

from prerender.errors import CacheCorruptionError
from prerender.models.cache import Artifact

log = structlog.get_logger()

_CREATE_ARTIFACT_TABLE = """
CREATE TABLE IF NOT EXISTS artifacts (
    key                TEXT PRIMARY KEY,
    route_id           TEXT NOT NULL,
    payload            BLOB NOT NULL,
    metadata           TEXT NOT NULL DEFAULT '{}',
    redirect_target    TEXT,
    source_error       TEXT,
    generated_at       TEXT NOT NULL,
    revalidate_seconds TEXT NOT NULL
)
"""

_CREATE_GENERATED_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_artifacts_generated ON artifacts(generated_at)"
)

_SELECT_COLUMNS = (
    "key, route_id, payload, metadata, redirect_target, source_error, "
    "generated_at, revalidate_seconds"
)


def _decode(row: tuple) -> Artifact:
    key = row[0]
    try:
        metadata = json.loads(row[3])
        if not isinstance(metadata, dict):
            raise ValueError("metadata is not an object")
        revalidate = row[7] if row[7] == "infinite" else int(row[7])
        generated_at = datetime.fromisoformat(row[6])
        if generated_at.tzinfo is None:
            raise ValueError("generated_at has no timezone")
        return Artifact(
            key=key,
            route_id=row[1],
            payload=bytes(row[2]),
            metadata=metadata,
            redirect_target=row[4],
            source_error=row[5],
            generated_at=generated_at,
            revalidate_seconds=revalidate,
        )
    except (TypeError, ValueError, ValidationError) as exc:
        raise CacheCorruptionError(str(key), str(exc)) from exc


class ArtifactStore:
    """SQLite-backed artifact persistence."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_ARTIFACT_TABLE)
        await self._db.execute(_CREATE_GENERATED_INDEX)
        await self._db.commit()

    async def load_all(self) -> list[Artifact]:
        """Read every decodable record, most recently generated last."""
        try:
            cursor = await self._db.execute(
                f"SELECT {_SELECT_COLUMNS} FROM artifacts ORDER BY generated_at"
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error:
            log.warning("store_read_error", exc_info=True)
            return []

        artifacts: list[Artifact] = []
        corrupt: list[str] = []
        for row in rows:
            try:
                artifacts.append(_decode(row))
            except CacheCorruptionError as exc:
                log.warning("store_record_corrupt", key=exc.key, error=exc.message)
                corrupt.append(exc.key)

        for key in corrupt:
            await self.delete(key)
        return artifacts

    async def get(self, key: str) -> Artifact | None:
        """Read one record. Returns ``None`` on miss, read failure, or corruption."""
        try:
            cursor = await self._db.execute(
                f"SELECT {_SELECT_COLUMNS} FROM artifacts WHERE key = ?", (key,)
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("store_read_error", key=key, exc_info=True)
            return None
        if row is None:
            return None
        try:
            return _decode(row)
        except CacheCorruptionError as exc:
            log.warning("store_record_corrupt", key=key, error=exc.message)
            return None

    async def save(self, artifact: Artifact) -> None:
        """Upsert a record. Non-fatal on failure."""
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO artifacts "
                f"({_SELECT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    artifact.key,
                    artifact.route_id,
                    artifact.payload,
                    json.dumps(artifact.metadata),
                    artifact.redirect_target,
                    artifact.source_error,
                    artifact.generated_at.isoformat(),
                    str(artifact.revalidate_seconds),
                ),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("store_write_error", key=artifact.key, exc_info=True)

    async def delete(self, key: str) -> None:
        """Remove a record. Non-fatal on failure."""
        try:
            await self._db.execute("DELETE FROM artifacts WHERE key = ?", (key,))
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("store_delete_error", key=key, exc_info=True)

    async def cleanup_expired(
        self, max_age: timedelta = timedelta(days=7), *, now: datetime | None = None
    ) -> int:
        """Delete records generated more than ``max_age`` before ``now``.

        ``now`` defaults to the wall clock. Non-fatal on failure.
        """
        try:
            cutoff = ((now or datetime.now(UTC)) - max_age).isoformat()
            cursor = await self._db.execute(
                "DELETE FROM artifacts WHERE generated_at < ?", (cutoff,)
            )
            deleted = cursor.rowcount
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("store_cleanup_error", exc_info=True)
            return 0
        log.info("store_cleanup_complete", deleted=deleted)
        return deleted
