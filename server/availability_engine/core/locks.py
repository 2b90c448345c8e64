"""In-process keyed locks serializing work on a single slot or listing."""

import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class KeyedLocks:
    """
    One ``asyncio.Lock`` per key, created on demand.

    Locks are held in a weak mapping and disappear once no coroutine holds or
    waits on them, so the registry does not grow with the number of slots.
    """

    def __init__(self, namespace: str):
        self.namespace = namespace
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: object) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._lock_for(str(key))
        async with lock:
            yield


slot_locks = KeyedLocks("slot")
listing_locks = KeyedLocks("listing")
