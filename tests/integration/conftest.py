"""Integration test fixtures.

Provides a fully wired AppState (registry, cache, scheduler, fallback,
router) over the sample routes from tests/conftest.py, driven by the manual
clock and the scripted renderer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from prerender.lifespan import open_app_state

if TYPE_CHECKING:
    from prerender.state import AppState


@pytest.fixture()
async def app_state(settings, sample_routes, sample_enumerators, renderer, clock) -> AppState:
    async with open_app_state(
        settings, sample_routes, renderer, sample_enumerators, clock=clock
    ) as state:
        yield state


@pytest.fixture()
def persistent_settings(settings, tmp_path):
    return settings.model_copy(
        update={
            "cache": settings.cache.model_copy(
                update={"persist": True, "db_path": str(tmp_path / "nested" / "artifacts.db")}
            )
        }
    )
