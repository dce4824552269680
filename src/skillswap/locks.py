"""Per-key asyncio locks.

Work on one key (a user id) is serialized, work on different keys runs
concurrently. Locks are created on first use and dropped once no task holds
or waits on them, so the map stays proportional to active users.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager


class KeyedLock:
    """A family of asyncio locks addressed by key."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}
        self._owners: dict[Hashable, asyncio.Task | None] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def held_by_current_task(self, key: Hashable) -> bool:
        return key in self._owners and self._owners[key] is asyncio.current_task()

    async def _acquire(self, key: Hashable, timeout: float | None) -> None:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            if timeout is None:
                await lock.acquire()
            else:
                await asyncio.wait_for(lock.acquire(), timeout)
        except BaseException:
            self._release_ref(key)
            raise
        self._owners[key] = asyncio.current_task()

    def _release(self, key: Hashable) -> None:
        self._owners.pop(key, None)
        self._locks[key].release()
        self._release_ref(key)

    def _release_ref(self, key: Hashable) -> None:
        remaining = self._waiters[key] - 1
        if remaining:
            self._waiters[key] = remaining
        else:
            del self._waiters[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, *keys: Hashable, timeout: float | None = None) -> AsyncIterator[None]:
        """Hold the locks for ``keys``.

        Keys are deduplicated and taken in sorted order so two tasks locking
        overlapping key sets cannot deadlock. ``timeout`` bounds each wait and
        raises ``TimeoutError`` when exceeded.
        """
        ordered = sorted(set(keys), key=repr)
        taken: list[Hashable] = []
        try:
            for key in ordered:
                await self._acquire(key, timeout)
                taken.append(key)
            yield
        finally:
            for key in reversed(taken):
                self._release(key)
