"""
Per-key asyncio locks with acquisition timeouts.

Used by the in-memory ledger and payment applier to serialize work on a
single account (or a single external payment id) without blocking work
on other keys.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Hashable


logger = logging.getLogger(__name__)


class KeyedLock:
    """
    A registry of asyncio locks, one per key.

    Locks are created on first use and discarded once no coroutine holds
    or waits on them, so the registry does not grow with the number of
    distinct keys ever seen.

    Example:
        locks = KeyedLock(timeout=5.0, on_timeout=lambda key: LockTimeoutError(key))
        async with locks.hold("acct-1"):
            ...
    """

    def __init__(
        self,
        timeout: float,
        on_timeout: Callable[[Hashable], Exception],
    ) -> None:
        self._timeout = timeout
        self._on_timeout = on_timeout
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Raises:
            The exception built by ``on_timeout`` if the lock cannot be
            acquired within the configured timeout.
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self._timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Timed out after {self._timeout}s waiting for lock on {key!r}")
                raise self._on_timeout(key)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_held(self, key: Hashable) -> bool:
        """Whether some coroutine currently holds the lock for ``key``."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()
