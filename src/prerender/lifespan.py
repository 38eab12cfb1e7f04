"""Construction and shutdown of the generation engine.

Startup order: registry build (fatal on error) -> optional durable store and
expired-record cleanup -> cache reload -> scheduler/fallback/router wiring.
While running, the store is pruned every ``cleanup_interval_hours``. Shutdown
stops the pruning, waits for in-flight generations, flushes pending writes,
then closes the database.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import AsyncExitStack, asynccontextmanager, suppress
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog
from pydantic import BaseModel

from prerender.cache import Clock, GenerationCache, utc_now
from prerender.errors import PrerenderError
from prerender.fallback import FallbackResolver
from prerender.models.route import cache_key
from prerender.registry import Enumerator, RouteRegistry
from prerender.router import RequestRouter
from prerender.scheduler import RegenerationScheduler, Renderer
from prerender.state import AppState
from prerender.store import ArtifactStore

if TYPE_CHECKING:
    from prerender.config import Settings
    from prerender.models.route import Route

log = structlog.get_logger()


class PrewarmReport(BaseModel):
    generated: int = 0
    skipped: int = 0
    failed: int = 0


async def _prune_periodically(
    store: ArtifactStore, max_age: timedelta, interval: timedelta, clock: Clock
) -> None:
    while True:
        await asyncio.sleep(interval.total_seconds())
        await store.cleanup_expired(max_age, now=clock())


async def _stop(task: asyncio.Task[None]) -> None:
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task


@asynccontextmanager
async def open_app_state(
    settings: Settings,
    routes: Iterable[Route],
    renderer: Renderer,
    enumerators: Mapping[str, Enumerator] | None = None,
    *,
    clock: Clock = utc_now,
) -> AsyncIterator[AppState]:
    """Build and yield a fully wired ``AppState``; tear it down on exit.

    ``RegistryBuildError`` propagates: a broken route table aborts startup.
    """
    registry = await RouteRegistry.build(routes, settings, enumerators)

    async with AsyncExitStack() as stack:
        db: aiosqlite.Connection | None = None
        store: ArtifactStore | None = None
        if settings.cache.persist:
            db_path = Path(settings.cache.db_path).expanduser()
            db_path.parent.mkdir(parents=True, exist_ok=True)
            db = await stack.enter_async_context(aiosqlite.connect(db_path))
            store = ArtifactStore(db)
            await store.init_db()
            if settings.cache.record_max_age_days is not None:
                max_age = timedelta(days=settings.cache.record_max_age_days)
                await store.cleanup_expired(max_age, now=clock())
                pruner = asyncio.create_task(
                    _prune_periodically(
                        store,
                        max_age,
                        timedelta(hours=settings.cache.cleanup_interval_hours),
                        clock,
                    ),
                    name="store-cleanup",
                )
                stack.push_async_callback(_stop, pruner)

        cache = GenerationCache(capacity=settings.cache.capacity, store=store, clock=clock)
        await cache.load()

        scheduler = RegenerationScheduler(
            cache, renderer, timeout_ms=settings.cache.generation_timeout_ms
        )
        fallback = FallbackResolver(scheduler)
        router = RequestRouter(
            registry,
            cache,
            scheduler,
            fallback,
            max_redirects=settings.routing.max_redirects,
        )
        state = AppState(
            settings=settings,
            registry=registry,
            cache=cache,
            scheduler=scheduler,
            fallback=fallback,
            router=router,
            store=store,
            db=db,
        )
        log.info("engine_started", routes=len(registry.routes), persist=store is not None)
        try:
            yield state
        finally:
            await scheduler.aclose()
            await cache.flush()
            log.info("engine_stopped", **cache.stats().model_dump())


async def prewarm(state: AppState) -> PrewarmReport:
    """Generate every enumerated key that is not cached yet.

    Runs with bounded concurrency. Failures are logged and counted; prewarming
    never raises for an individual key.
    """
    report = PrewarmReport()
    semaphore = asyncio.Semaphore(state.settings.cache.prewarm_concurrency)

    async def _one(route: Route, params: dict[str, str]) -> None:
        key = cache_key(route.id, params)
        path = state.registry.build_path(route, params)
        entry = state.cache.peek(key)
        if entry is not None and entry.artifact is not None:
            report.skipped += 1
            return
        async with semaphore:
            try:
                await state.scheduler.generate(key, route, params)
            except PrerenderError as exc:
                report.failed += 1
                log.warning("prewarm_failed", path=path, route_id=route.id, error=exc.message)
                return
        report.generated += 1
        log.debug("prewarm_generated", path=path)

    targets = state.registry.prebuilt_targets()
    await asyncio.gather(*(_one(route, params) for route, params in targets))
    log.info("prewarm_complete", **report.model_dump())
    return report
