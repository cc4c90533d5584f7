"""
Keyed asyncio locks.

Mutual exclusion scoped to a single key (a booking request id, a trip id)
so that unrelated keys never wait on each other.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable


class KeyedLock:
    """
    Registry of asyncio.Lock objects, one per key.

    Entries are dropped once no coroutine holds or waits on them, so the
    registry does not grow with the number of keys ever seen.
    """

    def __init__(self, name: str):
        self.name = name
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


# Serializes every mutation (and its event publication) of one booking request.
request_locks = KeyedLock("booking_request")

# Serializes tick, GPS ingestion and status mirroring of one active trip.
trip_locks = KeyedLock("active_trip")
