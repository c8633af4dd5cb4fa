"""
Keyed Store.

In-memory key-value store with one asyncio.Lock per key and an explicit
eviction sweep. Backs every piece of mutable per-caller state in the bot:
sessions, rate-limit windows, and command cooldowns.

Mutation for one key never waits on another key, so unrelated callers are
never serialized behind each other. Eviction is explicit: the owner calls
sweep() from a maintenance tick with a staleness predicate, and entries
whose lock is held or awaited are skipped rather than torn down mid-update.

Usage:
    from modules.backend.core.keyed_store import KeyedStore

    store: KeyedStore[int, RateLimitState] = KeyedStore("rate_limits")

    async with store.locked(caller_id):
        state = store.get(caller_id) or RateLimitState(caller_id)
        ...
        store.set(caller_id, state)

    evicted = await store.sweep(lambda key, state: state.is_idle(now))
"""

import asyncio
from collections.abc import AsyncIterator, Callable, Hashable
from contextlib import asynccontextmanager
from typing import Generic, TypeVar

from modules.backend.core.logging import get_logger

logger = get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class KeyedStore(Generic[K, V]):
    """Concurrent map with fine-grained per-key locking."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._items: dict[K, V] = {}
        self._locks: dict[K, asyncio.Lock] = {}
        # Coroutines inside or queued on locked(key)
        self._users: dict[K, int] = {}

    def lock_for(self, key: K) -> asyncio.Lock:
        """Return the lock guarding `key`, creating it on first use."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def locked(self, key: K) -> AsyncIterator[None]:
        """Hold the per-key lock for the duration of the block."""
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with self.lock_for(key):
                yield
        finally:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]

    def get(self, key: K) -> V | None:
        return self._items.get(key)

    def set(self, key: K, value: V) -> None:
        self._items[key] = value

    def pop(self, key: K) -> V | None:
        return self._items.pop(key, None)

    def items(self) -> list[tuple[K, V]]:
        """Snapshot of the current entries."""
        return list(self._items.items())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    async def sweep(self, is_stale: Callable[[K, V], bool]) -> int:
        """
        Evict every entry for which `is_stale(key, value)` is true.

        Entries whose lock is held or awaited by an in-flight operation are
        left for the next sweep, together with their lock.

        Returns:
            Number of evicted entries
        """
        evicted = 0
        for key, value in self.items():
            if key in self._users:
                continue
            if not is_stale(key, value):
                continue
            self._items.pop(key, None)
            self._locks.pop(key, None)
            evicted += 1

        for key in [k for k in self._locks if k not in self._items and k not in self._users]:
            del self._locks[key]

        if evicted:
            logger.debug(
                "Keyed store swept",
                extra={"store": self.name, "evicted": evicted, "remaining": len(self._items)},
            )
        return evicted
