from __future__ import annotations

from prerender.models.cache import Artifact, CacheEntry, CacheStats, EntryState
from prerender.models.render import NotFoundResult, Redirect, Rendered, RenderResult
from prerender.models.route import (
    FallbackMode,
    ParameterSet,
    PathSegment,
    RenderMode,
    Revalidate,
    Route,
    RouteMatch,
    cache_key,
    parse_pattern,
)
from prerender.models.serve import ServeResult, ServeStatus

__all__ = [
    # route
    "Route",
    "RouteMatch",
    "PathSegment",
    "ParameterSet",
    "RenderMode",
    "FallbackMode",
    "Revalidate",
    "cache_key",
    "parse_pattern",
    # cache
    "Artifact",
    "CacheEntry",
    "CacheStats",
    "EntryState",
    # render
    "Rendered",
    "NotFoundResult",
    "Redirect",
    "RenderResult",
    # serve
    "ServeResult",
    "ServeStatus",
]
