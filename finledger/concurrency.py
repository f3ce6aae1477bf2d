"""
Per-key async locks.

Balance mutations are serialized per account and recurring processing
is serialized per rule. A KeyedLock hands out one asyncio.Lock per key
and acquires several keys in sorted order so that two callers locking
the same pair of accounts cannot deadlock.

A key's lock lives only while someone holds or waits for it, so the
table does not grow with every transaction or rule ever seen.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional


class KeyedLock:
    """One asyncio.Lock per key, created on first use, dropped when unused."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        """Number of keys currently held or waited on."""
        return len(self._locks)

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
        else:
            del self._users[key]
            del self._locks[key]

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, *keys: Optional[str]) -> AsyncIterator[None]:
        """Hold the locks for all given keys (None and duplicates ignored)."""
        ordered = sorted({key for key in keys if key is not None})
        acquired: list[str] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    await lock.acquire()
                except BaseException:
                    # Cancelled while waiting
                    self._checkin(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)
