"""Shared fixtures: settings, a manual clock, a scripted renderer, sample routes."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from prerender.config import Settings
from prerender.models.render import Rendered, RenderResult
from prerender.models.route import FallbackMode, ParameterSet, RenderMode, Route


class ManualClock:
    """Deterministic clock; tests move time forward explicitly."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeRenderer:
    """Records every call. Payloads embed the call number so versions differ.

    ``outcomes`` maps route ID to a fixed result or exception. When ``gate`` is
    set, renders wait for it before producing a result.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, ParameterSet]] = []
        self.outcomes: dict[str, RenderResult | Exception] = {}
        self.gate: asyncio.Event | None = None
        self.active = 0
        self.max_active = 0

    async def render(self, route_id: str, params: ParameterSet) -> RenderResult:
        self.calls.append((route_id, dict(params)))
        number = len(self.calls)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            outcome = self.outcomes.get(route_id)
            if isinstance(outcome, Exception):
                raise outcome
            if outcome is not None:
                return outcome
            label = ",".join(f"{k}={v}" for k, v in sorted(params.items()))
            return Rendered(payload=f"{route_id}[{label}]#{number}".encode())
        finally:
            self.active -= 1

    def calls_for(self, route_id: str) -> int:
        return sum(1 for rid, _ in self.calls if rid == route_id)


async def _settle(scheduler, timeout: float = 2.0) -> None:
    """Wait until the scheduler has no generation in flight."""
    async with asyncio.timeout(timeout):
        while scheduler.in_flight_count:
            await asyncio.sleep(0.001)


@pytest.fixture()
def settle():
    return _settle


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture()
def settings() -> Settings:
    return Settings(cache={"revalidate_seconds": 10, "generation_timeout_ms": 1000})


@pytest.fixture()
def sample_routes() -> list[Route]:
    return [
        Route(id="home", pattern="/", render_mode=RenderMode.STATIC),
        Route(id="about", pattern="/about", render_mode=RenderMode.STATIC),
        Route(
            id="post",
            pattern="/posts/{slug}",
            revalidate_seconds=10,
            fallback_mode=FallbackMode.BLOCKING_GENERATE,
        ),
        Route(
            id="product",
            pattern="/products/{sku}",
            revalidate_seconds=30,
            fallback_mode=FallbackMode.REJECT,
        ),
        Route(
            id="author",
            pattern="/authors/{name}",
            fallback_mode=FallbackMode.GENERATE_WITH_PLACEHOLDER,
        ),
        Route(id="docs", pattern="/docs/{rest:path}"),
        Route(id="search", pattern="/search", render_mode=RenderMode.PER_REQUEST),
    ]


@pytest.fixture()
def sample_enumerators():
    async def posts() -> list[ParameterSet]:
        return [{"slug": "hello"}, {"slug": "world"}]

    async def products() -> list[ParameterSet]:
        return [{"sku": "a1"}]

    return {"post": posts, "product": products}
