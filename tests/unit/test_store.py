"""Unit tests for prerender.store."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import aiosqlite

if TYPE_CHECKING:
    from prerender.store import ArtifactStore

NOW = datetime(2026, 1, 1, tzinfo=UTC)


class TestSaveAndGet:
    async def test_round_trip_preserves_fields(self, store: ArtifactStore, make_artifact) -> None:
        artifact = make_artifact(
            "k",
            NOW,
            payload=b"\x00binary\xff",
            revalidate_seconds=30,
            metadata={"content-type": "text/html"},
            redirect_target=None,
            source_error="upstream slow",
        )
        await store.save(artifact)
        loaded = await store.get("k")
        assert loaded == artifact

    async def test_infinite_revalidate_persisted(self, store: ArtifactStore, make_artifact) -> None:
        await store.save(make_artifact("k", NOW, revalidate_seconds="infinite"))
        loaded = await store.get("k")
        assert loaded is not None
        assert loaded.revalidate_seconds == "infinite"

    async def test_get_nonexistent_returns_none(self, store: ArtifactStore) -> None:
        assert await store.get("missing") is None

    async def test_upsert_overwrites(self, store: ArtifactStore, make_artifact) -> None:
        await store.save(make_artifact("k", NOW, payload=b"v1"))
        await store.save(make_artifact("k", NOW, payload=b"v2"))
        loaded = await store.get("k")
        assert loaded is not None
        assert loaded.payload == b"v2"

    async def test_delete(self, store: ArtifactStore, make_artifact) -> None:
        await store.save(make_artifact("k", NOW))
        await store.delete("k")
        assert await store.get("k") is None

    async def test_read_failure_returns_none(self, store: ArtifactStore) -> None:
        """Simulate a database read error: should return None, not raise."""
        original_execute = store._db.execute

        async def failing_execute(*args, **kwargs):
            raise aiosqlite.OperationalError("disk I/O error")

        store._db.execute = failing_execute  # type: ignore[assignment]
        assert await store.get("k") is None
        assert await store.load_all() == []
        store._db.execute = original_execute  # type: ignore[assignment]

    async def test_write_failure_does_not_raise(self, store: ArtifactStore, make_artifact) -> None:
        """Simulate a database write error: should not raise."""
        original_execute = store._db.execute

        async def failing_execute(*args, **kwargs):
            raise aiosqlite.OperationalError("disk I/O error")

        store._db.execute = failing_execute  # type: ignore[assignment]
        # These should not raise
        await store.save(make_artifact("k", NOW))
        await store.delete("k")
        store._db.execute = original_execute  # type: ignore[assignment]


# ---------------------------------------------------------------------------
# Corrupt records
# ---------------------------------------------------------------------------


async def _insert_raw(store: ArtifactStore, key: str, metadata: str, generated_at: str) -> None:
    """Helper: insert a row bypassing encoding so it can be deliberately broken."""
    await store._db.execute(
        "INSERT INTO artifacts "
        "(key, route_id, payload, metadata, redirect_target, source_error, "
        "generated_at, revalidate_seconds) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        (key, "post", b"x", metadata, None, None, generated_at, "10"),
    )
    await store._db.commit()


class TestCorruptRecords:
    async def test_bad_metadata_is_a_miss(self, store: ArtifactStore) -> None:
        await _insert_raw(store, "bad", "{not json", NOW.isoformat())
        assert await store.get("bad") is None

    async def test_bad_timestamp_is_a_miss(self, store: ArtifactStore) -> None:
        await _insert_raw(store, "bad", "{}", "yesterday-ish")
        assert await store.get("bad") is None

    async def test_load_all_skips_and_drops_corrupt(
        self, store: ArtifactStore, make_artifact
    ) -> None:
        await store.save(make_artifact("good", NOW))
        await _insert_raw(store, "bad", "[1, 2]", NOW.isoformat())

        artifacts = await store.load_all()

        assert [a.key for a in artifacts] == ["good"]
        cursor = await store._db.execute("SELECT key FROM artifacts WHERE key = 'bad'")
        assert await cursor.fetchone() is None


# ---------------------------------------------------------------------------
# cleanup_expired
# ---------------------------------------------------------------------------


class TestCleanupExpired:
    async def test_cleanup_deletes_old_entries(self, store: ArtifactStore, make_artifact) -> None:
        """Records generated more than max_age ago should be deleted."""
        old = datetime.now(UTC) - timedelta(days=8)
        await store.save(make_artifact("old", old))

        deleted = await store.cleanup_expired(timedelta(days=7))

        assert deleted == 1
        assert await store.get("old") is None

    async def test_cleanup_preserves_recent(self, store: ArtifactStore, make_artifact) -> None:
        recent = datetime.now(UTC) - timedelta(days=2)
        await store.save(make_artifact("recent", recent))

        assert await store.cleanup_expired(timedelta(days=7)) == 0
        assert await store.get("recent") is not None

    async def test_cutoff_follows_supplied_clock(
        self, store: ArtifactStore, make_artifact
    ) -> None:
        await store.save(make_artifact("jan", NOW))
        await store.save(make_artifact("mar", NOW + timedelta(days=60)))

        deleted = await store.cleanup_expired(
            timedelta(days=30), now=NOW + timedelta(days=61)
        )

        assert deleted == 1
        assert await store.get("jan") is None
        assert await store.get("mar") is not None

    async def test_cleanup_failure_does_not_raise(self, store: ArtifactStore) -> None:
        """Simulate a database error during cleanup: should not raise."""
        original_execute = store._db.execute

        async def failing_execute(*args, **kwargs):
            raise aiosqlite.OperationalError("disk I/O error")

        store._db.execute = failing_execute  # type: ignore[assignment]
        assert await store.cleanup_expired() == 0
        store._db.execute = original_execute  # type: ignore[assignment]
