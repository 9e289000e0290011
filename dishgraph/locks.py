"""Partitioned per-key asyncio locks.

Used to serialize writers that target the same logical row (one restaurant
and dish pair, one entity name) while letting unrelated keys proceed
concurrently. Locks are created lazily and released from the table once no
task holds or waits on them.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable


class KeyedLockTable:
    """A table of asyncio locks keyed by arbitrary hashable values.

    Example:
        ```python
        locks = KeyedLockTable()
        async with locks.hold(("restaurant-1", "dish-9")):
            ...  # only one task per pair runs this block at a time
        ```
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: defaultdict[Hashable, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
