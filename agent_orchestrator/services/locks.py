"""
Keyed async locks.

One ``asyncio.Lock`` per key (product, agent, ...). Work on different keys
runs in parallel; work on the same key is serialized.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from ..errors import LockTimeoutError

logger = logging.getLogger(__name__)


class KeyedLockManager:
    """
    Lazily created per-key locks with a bounded wait.

    Locks are not re-entrant: code holding a key must not acquire the same
    key again.

    Example:
        locks = KeyedLockManager("graph", default_timeout=10.0)
        async with locks.acquire("shop"):
            ...
    """

    def __init__(self, name: str = "lock", default_timeout: float = 10.0):
        self.name = name
        self.default_timeout = default_timeout
        self._locks: Dict[str, asyncio.Lock] = {}
        self._registry_lock = asyncio.Lock()

    async def _get_lock(self, key: str) -> asyncio.Lock:
        async with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            return lock

    @asynccontextmanager
    async def acquire(self, key: str, timeout: Optional[float] = None) -> AsyncIterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Raises:
            LockTimeoutError: If the lock is not obtained within ``timeout``
        """
        timeout = self.default_timeout if timeout is None else timeout
        lock = await self._get_lock(key)
        if not await _acquire_within(lock, timeout):
            logger.warning(f"Timed out waiting {timeout}s for {self.name} lock '{key}'")
            raise LockTimeoutError(f"{self.name}:{key}", timeout)

        try:
            yield
        finally:
            lock.release()

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


async def _acquire_within(lock: asyncio.Lock, timeout: float) -> bool:
    """
    Acquire ``lock`` or give up after ``timeout`` seconds.

    The waiter runs as its own task. When it is abandoned (timeout, or the
    caller is cancelled) a lock it obtained anyway is released, so a
    timeout never leaves the lock held without an owner.
    """
    waiter = asyncio.ensure_future(lock.acquire())
    try:
        done, _ = await asyncio.wait({waiter}, timeout=timeout)
    except asyncio.CancelledError:
        _abandon(waiter, lock)
        raise

    if done:
        return waiter.result()
    _abandon(waiter, lock)
    return False


def _abandon(waiter: "asyncio.Future[bool]", lock: asyncio.Lock) -> None:
    def release_if_acquired(task: "asyncio.Future[bool]") -> None:
        if not task.cancelled() and task.exception() is None:
            lock.release()

    waiter.add_done_callback(release_if_acquired)
    waiter.cancel()
