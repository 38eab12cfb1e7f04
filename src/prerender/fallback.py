"""Fallback policy for parameter sets missing from the pre-built enumeration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from prerender.errors import NotFoundError
from prerender.models.route import FallbackMode
from prerender.models.serve import ServeStatus

if TYPE_CHECKING:
    from prerender.models.cache import Artifact
    from prerender.models.route import RouteMatch
    from prerender.scheduler import RegenerationScheduler

log = structlog.get_logger()


class FallbackResolver:
    def __init__(self, scheduler: RegenerationScheduler) -> None:
        self._scheduler = scheduler

    async def resolve(self, match: RouteMatch) -> tuple[Artifact | None, ServeStatus]:
        """Apply the route's fallback mode to an uncached, un-enumerated match.

        Reject raises ``NotFoundError`` without rendering. BlockingGenerate waits
        for the single-flight generation. GenerateWithPlaceholder starts (or
        joins) the generation and returns no artifact immediately.
        """
        route = match.route
        key = match.key
        mode = route.fallback_mode or FallbackMode.BLOCKING_GENERATE

        if mode is FallbackMode.REJECT:
            log.debug("fallback_rejected", route_id=route.id, params=match.params)
            raise NotFoundError(f"No pre-built page for route {route.id!r} with {match.params}")

        if mode is FallbackMode.BLOCKING_GENERATE:
            artifact = await self._scheduler.generate(key, route, match.params)
            return artifact, ServeStatus.MISS

        self._scheduler.trigger(key, route, match.params)
        log.debug("fallback_placeholder", key=key, route_id=route.id)
        return None, ServeStatus.PLACEHOLDER
