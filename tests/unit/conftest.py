"""Unit-specific fixtures (no I/O beyond in-memory SQLite)."""

from __future__ import annotations

from datetime import datetime

import aiosqlite
import pytest

from prerender.cache import GenerationCache
from prerender.models.cache import Artifact
from prerender.store import ArtifactStore


@pytest.fixture()
async def store():
    """In-memory SQLite artifact store for unit tests."""
    async with aiosqlite.connect(":memory:") as db:
        s = ArtifactStore(db)
        await s.init_db()
        yield s


@pytest.fixture()
def cache(clock) -> GenerationCache:
    return GenerationCache(clock=clock)


@pytest.fixture()
def make_artifact():
    """Factory for complete artifacts with sensible defaults."""

    def _make(
        key: str,
        generated_at: datetime,
        payload: bytes = b"<html></html>",
        revalidate_seconds: int | str = 10,
        **extra,
    ) -> Artifact:
        return Artifact(
            key=key,
            route_id=extra.pop("route_id", "post"),
            payload=payload,
            generated_at=generated_at,
            revalidate_seconds=revalidate_seconds,
            **extra,
        )

    return _make
