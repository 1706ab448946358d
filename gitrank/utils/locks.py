"""
Keyed asyncio locks for serializing read-modify-write on shared rows.

Locks are created on demand per key and dropped once no task holds or
waits on them, so memory stays bounded by the number of keys in flight.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Hashable, Iterable


class KeyedLock:
    """In-process mutex per key (user id, endorsement pair, ...)."""

    def __init__(self):
        self._locks = {}
        self._waiters = defaultdict(int)

    def _acquire_ref(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] += 1
        return lock

    def _release_ref(self, key: Hashable):
        self._waiters[key] -= 1
        if self._waiters[key] <= 0:
            self._waiters.pop(key, None)
            self._locks.pop(key, None)

    @asynccontextmanager
    async def hold(self, key: Hashable):
        """Hold the lock for a single key."""
        lock = self._acquire_ref(key)
        try:
            async with lock:
                yield
        finally:
            self._release_ref(key)

    @asynccontextmanager
    async def hold_many(self, keys: Iterable[Hashable]):
        """
        Hold the locks for several keys at once.

        Keys are acquired in sorted order so two tasks locking overlapping
        key sets can never deadlock.
        """
        ordered = sorted(set(keys))
        acquired = []
        try:
            for key in ordered:
                lock = self._acquire_ref(key)
                try:
                    await lock.acquire()
                except BaseException:
                    self._release_ref(key)
                    raise
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._release_ref(key)

    def __len__(self) -> int:
        return len(self._locks)
