"""Per-identifier asyncio locks, created lazily and evicted when unused."""

import asyncio
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class LockRegistry:
    """
    Hands out one asyncio.Lock per identifier.

    An entry lives while at least one task holds or waits on it, so a
    lock is never replaced while someone depends on it. The dict itself is
    guarded by a plain mutex scoped to insert/remove only; it is never held
    across an await.
    """

    def __init__(self):
        self._entries: Dict[str, _LockEntry] = {}
        self._registry_lock = threading.Lock()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """
        Acquire the lock for key for the duration of the context.

        Args:
            key: Identifier to serialize on
        """
        with self._registry_lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = _LockEntry()
                self._entries[key] = entry
            entry.users += 1

        try:
            async with entry.lock:
                yield
        finally:
            with self._registry_lock:
                entry.users -= 1
                if entry.users == 0 and self._entries.get(key) is entry:
                    del self._entries[key]

    def __contains__(self, key: str) -> bool:
        with self._registry_lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._entries)
