"""Generation cache and regeneration scheduler with stale-while-revalidate."""

from __future__ import annotations

from prerender.cache import GenerationCache
from prerender.config import Settings
from prerender.errors import (
    CacheCorruptionError,
    ErrorCode,
    GenerationError,
    GenerationTimeoutError,
    NotFoundError,
    PrerenderError,
    RegistryBuildError,
)
from prerender.fallback import FallbackResolver
from prerender.lifespan import open_app_state, prewarm
from prerender.logging_config import configure_logging
from prerender.registry import RouteRegistry
from prerender.router import RequestRouter
from prerender.scheduler import RegenerationScheduler, Renderer
from prerender.state import AppState

__all__ = [
    "AppState",
    "CacheCorruptionError",
    "ErrorCode",
    "FallbackResolver",
    "GenerationCache",
    "GenerationError",
    "GenerationTimeoutError",
    "NotFoundError",
    "PrerenderError",
    "RegenerationScheduler",
    "RegistryBuildError",
    "Renderer",
    "RequestRouter",
    "RouteRegistry",
    "Settings",
    "configure_logging",
    "open_app_state",
    "prewarm",
]
