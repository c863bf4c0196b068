"""Per-key asyncio locks.

Callers that mutate state for one plugin serialize on that plugin's lock while
work for other plugins proceeds in parallel.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class KeyedLock:
    """A lazily populated map of ``asyncio.Lock`` objects keyed by string.

    Locks are created on first use and kept for the lifetime of the
    instance; the key space is the set of registered plugins, which is
    small and bounded. Locks are not reentrant: code holding the lock for a
    key must not try to acquire the same key on the same instance.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        # setdefault is atomic with respect to the event loop
        return self._locks.setdefault(key, asyncio.Lock())

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._lock_for(key)
        async with lock:
            yield

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    def discard(self, key: str) -> None:
        """Forget the lock for ``key`` if nobody holds it."""
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            self._locks.pop(key, None)
