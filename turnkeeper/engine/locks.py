"""Per-key mutual exclusion for channel and user state."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


def channel_key(channel_id: int) -> str:
    return f"channel:{channel_id}"


def user_key(user_id: int) -> str:
    return f"user:{user_id}"


def session_key(channel_id: int) -> str:
    return f"session:{channel_id}"


class KeyedLock:
    """One asyncio.Lock per key.

    Timer callbacks and commands touching the same channel (or user) queue up
    behind each other; unrelated keys never block one another. Locks are not
    reentrant: code holding a key must not try to take it again.

    Order when nesting: ``session`` before ``channel``, ``user`` before
    ``channel``.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        async with self._get(key):
            yield

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()
