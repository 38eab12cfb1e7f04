from __future__ import annotations

from datetime import datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from prerender.models.route import Revalidate


class EntryState(StrEnum):
    FRESH = "fresh"
    STALE = "stale"
    GENERATING = "generating"


class Artifact(BaseModel):
    """A complete generated output for one cache key."""

    model_config = ConfigDict(frozen=True)

    key: str
    route_id: str
    payload: bytes
    metadata: dict[str, str] = {}
    generated_at: datetime
    revalidate_seconds: Revalidate = "infinite"
    redirect_target: str | None = None  # Set when the renderer answered with a redirect
    source_error: str | None = None  # Degradation reported by the renderer

    def is_stale(self, now: datetime) -> bool:
        if self.revalidate_seconds == "infinite":
            return False
        return now - self.generated_at >= timedelta(seconds=self.revalidate_seconds)


class CacheEntry(BaseModel):
    """Snapshot of one cache slot. Replaced, never mutated, on every transition."""

    model_config = ConfigDict(frozen=True)

    key: str
    artifact: Artifact | None = None  # None only while the first generation runs
    state: EntryState
    invalidated: bool = False  # Forced Stale regardless of age
    last_error: str | None = None
    failures: int = 0


class CacheStats(BaseModel):
    hits: int = 0
    stale_hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
