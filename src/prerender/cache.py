"""In-memory generation cache with optional write-through persistence.

Every public transition (``put``, ``mark_generating``, ``release``,
``invalidate``, ``evict``) runs to completion without awaiting, so on the
event loop each one is atomic with respect to every other task: a reader sees
either the previous ``CacheEntry`` or its replacement, never a mix. Entries
are frozen models and are replaced, not mutated. There is no lock shared
across keys.

Freshness is derived on read from the artifact's ``generated_at`` and its
effective ``revalidate_seconds``, so an entry needs no timer to go stale.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from prerender.models.cache import Artifact, CacheEntry, CacheStats, EntryState

if TYPE_CHECKING:
    from prerender.store import ArtifactStore

log = structlog.get_logger()

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class GenerationCache:
    """Keyed store of the most recent artifact per route+parameter fingerprint.

    ``capacity`` bounds the number of entries; the least recently used entry is
    evicted first. Entries that are generating are never evicted, so the cache
    can briefly exceed capacity while every slot is busy.
    """

    def __init__(
        self,
        *,
        capacity: int | None = None,
        store: ArtifactStore | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._capacity = capacity
        self._store = store
        self._clock = clock
        self._stats = CacheStats()
        self._pending: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @property
    def clock(self) -> Clock:
        return self._clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: str) -> CacheEntry | None:
        """Return the current entry with its derived state, or ``None`` on miss.

        An entry whose first generation is still running is returned with
        ``artifact=None`` and counted as a miss.
        """
        entry = self.peek(key)
        if entry is None or entry.artifact is None:
            self._stats.misses += 1
            return entry
        self._entries.move_to_end(key)
        if entry.state is EntryState.FRESH:
            self._stats.hits += 1
        else:
            self._stats.stale_hits += 1
        return entry

    def peek(self, key: str) -> CacheEntry | None:
        """Like ``get`` without touching recency or statistics."""
        entry = self._entries.get(key)
        if entry is None or entry.state is EntryState.GENERATING:
            return entry
        state = self._derive_state(entry)
        if state is entry.state:
            return entry
        return entry.model_copy(update={"state": state})

    def _derive_state(self, entry: CacheEntry) -> EntryState:
        if entry.artifact is None or entry.invalidated:
            return EntryState.STALE
        if entry.artifact.is_stale(self._clock()):
            return EntryState.STALE
        return EntryState.FRESH

    def stats(self) -> CacheStats:
        return self._stats.model_copy(update={"size": len(self._entries)})

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def put(self, key: str, artifact: Artifact) -> CacheEntry:
        """Publish ``artifact`` as the Fresh entry for ``key`` (atomic replace)."""
        entry = CacheEntry(key=key, artifact=artifact, state=EntryState.FRESH)
        self._entries[key] = entry
        self._entries.move_to_end(key)
        self._persist(artifact)
        self._enforce_capacity(keep=key)
        return entry

    def mark_generating(self, key: str) -> bool:
        """Move a Fresh, Stale or missing entry to Generating.

        Returns ``False`` when another task already owns generation of ``key``.
        """
        entry = self._entries.get(key)
        if entry is not None and entry.state is EntryState.GENERATING:
            return False
        if entry is None:
            self._entries[key] = CacheEntry(key=key, state=EntryState.GENERATING)
        else:
            self._entries[key] = entry.model_copy(update={"state": EntryState.GENERATING})
        return True

    def release(self, key: str, error: str | None = None) -> None:
        """End a generation that produced nothing.

        The entry reverts to Stale and keeps its previous artifact. A placeholder
        created for a first generation is removed, so the key is a miss again.
        """
        entry = self._entries.get(key)
        if entry is None:
            return
        if entry.artifact is None:
            del self._entries[key]
            return
        self._entries[key] = entry.model_copy(
            update={
                "state": EntryState.STALE,
                "invalidated": True,
                "last_error": error if error is not None else entry.last_error,
                "failures": entry.failures + (1 if error is not None else 0),
            }
        )

    def invalidate(self, key: str) -> bool:
        """Force an entry Stale regardless of age. Returns ``False`` on miss."""
        entry = self._entries.get(key)
        if entry is None or entry.artifact is None:
            return False
        if entry.state is not EntryState.GENERATING:
            self._entries[key] = entry.model_copy(
                update={"state": EntryState.STALE, "invalidated": True}
            )
        return True

    def evict(self, key: str) -> bool:
        """Remove an entry and its durable record. Generating entries are kept."""
        entry = self._entries.get(key)
        if entry is None or entry.state is EntryState.GENERATING:
            return False
        del self._entries[key]
        self._stats.evictions += 1
        self._forget(key)
        return True

    def _enforce_capacity(self, keep: str | None = None) -> None:
        if self._capacity is None:
            return
        excess = len(self._entries) - self._capacity
        if excess <= 0:
            return
        victims = [
            key
            for key, entry in self._entries.items()
            if entry.state is not EntryState.GENERATING and key != keep
        ][:excess]
        for key in victims:
            del self._entries[key]
            self._stats.evictions += 1
            self._forget(key)
            log.debug("cache_evicted", key=key)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> int:
        """Populate memory from the durable store. Called once at startup."""
        if self._store is None:
            return 0
        artifacts = await self._store.load_all()
        for artifact in artifacts:
            self._entries[artifact.key] = CacheEntry(
                key=artifact.key, artifact=artifact, state=EntryState.FRESH
            )
            self._entries.move_to_end(artifact.key)
        self._enforce_capacity()
        log.info("cache_loaded", entries=len(self._entries), records=len(artifacts))
        return len(self._entries)

    def _persist(self, artifact: Artifact) -> None:
        if self._store is not None:
            self._spawn(self._store.save(artifact))

    def _forget(self, key: str) -> None:
        if self._store is not None:
            self._spawn(self._store.delete(key))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for every pending durable write. Called at shutdown."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
