"""Request entry point: resolve a path and decide what to serve."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from prerender.errors import ErrorCode, GenerationError, NotFoundError
from prerender.models.route import FallbackMode, RenderMode
from prerender.models.serve import ServeResult, ServeStatus

if TYPE_CHECKING:
    from prerender.cache import GenerationCache
    from prerender.fallback import FallbackResolver
    from prerender.models.cache import Artifact
    from prerender.registry import RouteRegistry
    from prerender.scheduler import RegenerationScheduler

log = structlog.get_logger()


class RequestRouter:
    """Orchestrates registry, cache, scheduler and fallback for one request.

    Static and incremental routes are served cache-first; a miss on a
    pre-built key generates synchronously, a miss on anything else goes
    through the route's fallback mode. Per-request routes render on every
    call and never touch the cache.
    """

    def __init__(
        self,
        registry: RouteRegistry,
        cache: GenerationCache,
        scheduler: RegenerationScheduler,
        fallback: FallbackResolver,
        *,
        max_redirects: int = 5,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._scheduler = scheduler
        self._fallback = fallback
        self._max_redirects = max_redirects

    async def handle(self, path: str) -> ServeResult:
        """Serve ``path``, following redirect artifacts.

        Raises ``NotFoundError`` or ``GenerationError`` (including
        ``GenerationTimeoutError``) when nothing can be served.
        """
        visited = [path]
        result = await self._serve(path)
        while result.artifact is not None and result.artifact.redirect_target is not None:
            target = result.artifact.redirect_target
            if len(visited) > self._max_redirects or target in visited:
                raise GenerationError(
                    f"Too many redirects serving {path!r}: {' -> '.join([*visited, target])}",
                    code=ErrorCode.REDIRECT_LOOP,
                )
            log.debug("redirect_followed", source=visited[-1], target=target)
            visited.append(target)
            result = await self._serve(target)
        return result

    async def _serve(self, path: str) -> ServeResult:
        match = self._registry.resolve(path)
        route = match.route
        key = match.key

        if route.render_mode is RenderMode.PER_REQUEST:
            artifact = await self._scheduler.render_once(key, route, match.params)
            return self._result(path, key, artifact, ServeStatus.BYPASS)

        entry = self._cache.peek(key)
        has_artifact = entry is not None and entry.artifact is not None
        if has_artifact or match.prebuilt:
            artifact, status = await self._scheduler.ensure_fresh(key, route, match.params)
        else:
            artifact, status = await self._fallback.resolve(match)
        return self._result(path, key, artifact, status)

    async def revalidate(self, path: str) -> Artifact:
        """Regenerate the artifact for ``path`` now, regardless of its age.

        Other readers keep receiving the previous artifact until the new one
        is published. Un-enumerated keys under a rejecting fallback that were
        never cached raise ``NotFoundError``.
        """
        match = self._registry.resolve(path)
        if match.route.render_mode is RenderMode.PER_REQUEST:
            return await self._scheduler.render_once(match.key, match.route, match.params)
        if (
            not match.prebuilt
            and match.key not in self._cache
            and match.route.fallback_mode is FallbackMode.REJECT
        ):
            raise NotFoundError(
                f"No pre-built page for route {match.route.id!r} with {match.params}"
            )
        log.info("revalidate_requested", path=path, key=match.key)
        return await self._scheduler.generate(match.key, match.route, match.params)

    @staticmethod
    def _result(
        path: str, key: str, artifact: Artifact | None, status: ServeStatus
    ) -> ServeResult:
        return ServeResult(
            path=path,
            key=key,
            status=status,
            artifact=artifact,
            generated_at=artifact.generated_at if artifact is not None else None,
        )
