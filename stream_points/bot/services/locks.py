"""Per-user serialization for balance mutations."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from stream_points.web.crud import normalize_username

logger = logging.getLogger(__name__)


class UserLocks:
    """Registry of one ``asyncio.Lock`` per normalized username.

    ``hold(username)`` serializes every award path touching that user.
    ``hold_all()`` waits until no per-user holder is active and keeps new
    ones out, which the monthly reset needs so it never interleaves with an
    in-flight award. Neither context is re-entrant.

    A lock is dropped once nobody holds or waits on it, so the registry only
    tracks users with an award in progress.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}
        self._condition = asyncio.Condition()
        self._active = 0
        self._exclusive = False

    def _acquire_entry(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _release_entry(self, key: str) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
        else:
            del self._users[key]
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, username: str) -> AsyncIterator[None]:
        key = normalize_username(username)
        async with self._condition:
            await self._condition.wait_for(lambda: not self._exclusive)
            self._active += 1
        lock = self._acquire_entry(key)
        try:
            async with lock:
                yield
        finally:
            self._release_entry(key)
            async with self._condition:
                self._active -= 1
                self._condition.notify_all()

    @asynccontextmanager
    async def hold_all(self) -> AsyncIterator[None]:
        async with self._condition:
            await self._condition.wait_for(lambda: not self._exclusive)
            self._exclusive = True
            await self._condition.wait_for(lambda: self._active == 0)
        logger.debug("Exclusive ledger access acquired")
        try:
            yield
        finally:
            async with self._condition:
                self._exclusive = False
                self._condition.notify_all()
