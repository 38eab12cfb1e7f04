"""Single-flight regeneration with deadlines and stale-while-revalidate.

Per key the state machine is::

    Fresh --(age >= revalidate)--> Stale --(mark_generating)--> Generating
    Generating --(success)--> Fresh
    Generating --(failure or deadline)--> Stale   (Missing if there was no artifact)

At most one generation task exists per key. Callers that lose the race await
the winner's task through ``asyncio.shield`` so an impatient observer never
cancels the shared work. A render that outlives its deadline is abandoned,
not cancelled: its slot is freed immediately and whatever it eventually
returns is logged and dropped.

Async renderers run as tasks on the loop. Plain (synchronous) renderers run in
worker threads via ``asyncio.to_thread``, so a blocking render neither stalls
other requests nor escapes its deadline.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable
from functools import partial
from typing import TYPE_CHECKING, Any, Protocol

import structlog
from pydantic import TypeAdapter, ValidationError

from prerender.errors import (
    GenerationError,
    GenerationTimeoutError,
    NotFoundError,
    PrerenderError,
)
from prerender.models.cache import Artifact, EntryState
from prerender.models.render import NotFoundResult, Redirect, Rendered, RenderResult
from prerender.models.serve import ServeStatus

if TYPE_CHECKING:
    from prerender.cache import GenerationCache
    from prerender.models.route import ParameterSet, Route

log = structlog.get_logger()

_RESULT_ADAPTER: TypeAdapter[RenderResult] = TypeAdapter(RenderResult)


class Renderer(Protocol):
    """External collaborator that turns a route and parameters into output.

    ``render`` may be a coroutine function or a plain function. It returns a
    ``RenderResult`` model or the equivalent tagged mapping
    (``{"kind": "rendered", "payload": ...}``).
    """

    def render(
        self, route_id: str, params: ParameterSet
    ) -> RenderResult | Awaitable[RenderResult]: ...


def _discard_late_result(key: str, task: asyncio.Future[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    log.info("late_result_discarded", key=key, failed=exc is not None)


def _consume_exception(task: asyncio.Task[Artifact]) -> None:
    # Background generations have no awaiting caller; failures are already logged.
    if not task.cancelled():
        task.exception()


def _coerce_result(route: Route, result: Any) -> RenderResult:
    if isinstance(result, Rendered | NotFoundResult | Redirect):
        return result
    try:
        return _RESULT_ADAPTER.validate_python(result)
    except ValidationError as exc:
        raise GenerationError(
            f"Renderer returned unsupported result {type(result).__name__} "
            f"for route {route.id!r}",
            cause=exc,
        ) from exc


class RegenerationScheduler:
    def __init__(
        self,
        cache: GenerationCache,
        renderer: Renderer,
        *,
        timeout_ms: int,
    ) -> None:
        self._cache = cache
        self._renderer = renderer
        self._timeout_ms = timeout_ms
        self._in_flight: dict[str, asyncio.Task[Artifact]] = {}
        self._abandoned: set[asyncio.Future[Any]] = set()

    def in_flight(self, key: str) -> bool:
        return key in self._in_flight

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def ensure_fresh(
        self, key: str, route: Route, params: ParameterSet
    ) -> tuple[Artifact, ServeStatus]:
        """Serve ``key`` according to its state.

        Fresh: returned as-is. Stale with a prior artifact: returned immediately
        while a background regeneration runs. No prior artifact: the caller
        blocks on the (single-flight) generation and sees its errors.
        """
        entry = self._cache.get(key)
        if entry is not None and entry.artifact is not None:
            if entry.state is EntryState.FRESH:
                return entry.artifact, ServeStatus.HIT
            if entry.state is EntryState.STALE:
                self.trigger(key, route, params)
            return entry.artifact, ServeStatus.STALE
        artifact = await self.generate(key, route, params)
        return artifact, ServeStatus.MISS

    def trigger(self, key: str, route: Route, params: ParameterSet) -> asyncio.Task[Artifact]:
        """Start, or join, a generation of ``key`` without waiting for it."""
        task = self._in_flight.get(key)
        if task is not None:
            return task
        if not self._cache.mark_generating(key):
            # Marked generating outside this scheduler; nothing will finish it.
            self._cache.release(key)
            self._cache.mark_generating(key)
        task = asyncio.create_task(self._run(key, route, params), name=f"generate:{key[:12]}")
        task.add_done_callback(_consume_exception)
        self._in_flight[key] = task
        log.debug("generation_started", key=key, route_id=route.id)
        return task

    async def generate(self, key: str, route: Route, params: ParameterSet) -> Artifact:
        """Generate ``key`` (or join the running generation) and wait for the result."""
        return await asyncio.shield(self.trigger(key, route, params))

    async def render_once(self, key: str, route: Route, params: ParameterSet) -> Artifact:
        """Render outside the cache and single-flight. Used for per-request routes."""
        return await self._render(key, route, params)

    async def _run(self, key: str, route: Route, params: ParameterSet) -> Artifact:
        started = time.monotonic()
        try:
            artifact = await self._render(key, route, params)
        except NotFoundError:
            self._cache.release(key)
            self._cache.evict(key)
            log.info("generation_not_found", key=key, route_id=route.id)
            raise
        except GenerationError as exc:
            self._cache.release(key, error=exc.message)
            log.warning(
                "generation_failed",
                key=key,
                route_id=route.id,
                code=exc.code.value,
                error=exc.message,
                exc_info=exc.cause is not None,
            )
            raise
        except asyncio.CancelledError:
            self._cache.release(key)
            log.info("generation_cancelled", key=key, route_id=route.id)
            raise
        except BaseException as exc:
            self._cache.release(key, error=str(exc) or type(exc).__name__)
            log.error("generation_crashed", key=key, route_id=route.id, exc_info=True)
            raise
        else:
            self._cache.put(key, artifact)
            log.info(
                "generation_complete",
                key=key,
                route_id=route.id,
                duration_ms=round((time.monotonic() - started) * 1000, 1),
            )
            return artifact
        finally:
            self._in_flight.pop(key, None)

    def _start(self, route: Route, params: ParameterSet) -> asyncio.Future[Any]:
        try:
            render = self._renderer.render
            if inspect.iscoroutinefunction(render):
                return asyncio.ensure_future(render(route.id, dict(params)))
            return asyncio.ensure_future(asyncio.to_thread(render, route.id, dict(params)))
        except Exception as exc:
            raise GenerationError(
                f"Renderer could not be started for route {route.id!r}: {exc}", cause=exc
            ) from exc

    async def _render(self, key: str, route: Route, params: ParameterSet) -> Artifact:
        render = self._start(route, params)
        try:
            done, _ = await asyncio.wait({render}, timeout=self._timeout_ms / 1000)
        except asyncio.CancelledError:
            render.cancel()
            raise
        if not done:
            # A thread cannot be interrupted; it finishes in the background.
            self._abandoned.add(render)
            render.add_done_callback(self._abandoned.discard)
            render.add_done_callback(partial(_discard_late_result, key))
            raise GenerationTimeoutError(key, self._timeout_ms)

        try:
            result = render.result()
        except PrerenderError:
            raise
        except Exception as exc:
            raise GenerationError(
                f"Renderer failed for route {route.id!r}: {exc}", cause=exc
            ) from exc

        try:
            return self._to_artifact(key, route, _coerce_result(route, result))
        except PrerenderError:
            raise
        except Exception as exc:
            raise GenerationError(
                f"Could not build an artifact for route {route.id!r}: {exc}", cause=exc
            ) from exc

    def _to_artifact(self, key: str, route: Route, result: RenderResult) -> Artifact:
        now = self._cache.clock()
        revalidate = route.revalidate_seconds if route.revalidate_seconds is not None else 0
        if isinstance(result, Rendered):
            return Artifact(
                key=key,
                route_id=route.id,
                payload=result.payload,
                metadata=result.metadata,
                generated_at=now,
                revalidate_seconds=(
                    result.revalidate_seconds
                    if result.revalidate_seconds is not None
                    else revalidate
                ),
                source_error=result.error,
            )
        if isinstance(result, Redirect):
            return Artifact(
                key=key,
                route_id=route.id,
                payload=b"",
                generated_at=now,
                revalidate_seconds=revalidate,
                redirect_target=result.target,
            )
        raise NotFoundError(f"Renderer reported no content for route {route.id!r}")

    async def aclose(self) -> None:
        """Wait for in-flight generations, then drop abandoned renders."""
        tasks = list(self._in_flight.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for render in list(self._abandoned):
            render.cancel()
        if self._abandoned:
            await asyncio.gather(*self._abandoned, return_exceptions=True)
