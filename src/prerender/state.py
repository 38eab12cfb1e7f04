from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite

    from prerender.cache import GenerationCache
    from prerender.config import Settings
    from prerender.fallback import FallbackResolver
    from prerender.registry import RouteRegistry
    from prerender.router import RequestRouter
    from prerender.scheduler import RegenerationScheduler
    from prerender.store import ArtifactStore


@dataclass
class AppState:
    """Everything wired together at startup, passed by reference to callers."""

    settings: Settings
    registry: RouteRegistry
    cache: GenerationCache
    scheduler: RegenerationScheduler
    fallback: FallbackResolver
    router: RequestRouter
    store: ArtifactStore | None = None
    db: aiosqlite.Connection | None = None
