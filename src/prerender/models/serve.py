from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel

from prerender.models.cache import Artifact


class ServeStatus(StrEnum):
    HIT = "hit"  # Fresh artifact from cache
    STALE = "stale"  # Stale artifact served, regeneration scheduled
    MISS = "miss"  # Generated synchronously for this request
    BYPASS = "bypass"  # Per-request route, cache not consulted
    PLACEHOLDER = "placeholder"  # Generation running in the background


class ServeResult(BaseModel):
    path: str
    key: str
    status: ServeStatus
    artifact: Artifact | None = None  # None only for placeholders
    generated_at: datetime | None = None

    @property
    def payload(self) -> bytes | None:
        return self.artifact.payload if self.artifact is not None else None
