"""In-process per-resource locks and the shared LockContext."""

import asyncio
import logging
import time
import uuid
from typing import Optional, Protocol

from beaver.locking.redis_lock import Lock, LockTimeoutError

logger = logging.getLogger(__name__)


class LockManager(Protocol):
    async def acquire(self, resource: str, timeout: int = 300) -> Lock: ...

    async def release(self, lock: Lock) -> bool: ...


class LocalLock:
    """asyncio.Lock per resource, for a single API process."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, str] = {}
        self._waiters: dict[str, int] = {}

    async def acquire(self, resource: str, timeout: int = 300) -> Lock:
        """
        Acquire the lock for a resource.

        Raises:
            LockTimeoutError: If the lock is not free within timeout seconds
        """
        lock = self._locks.setdefault(resource, asyncio.Lock())
        self._waiters[resource] = self._waiters.get(resource, 0) + 1
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise LockTimeoutError(f"Failed to acquire lock on {resource} within {timeout}s") from e
        finally:
            self._waiters[resource] -= 1

        lock_id = str(uuid.uuid4())
        self._holders[resource] = lock_id
        logger.debug(f"Acquired local lock: {resource}")
        return Lock(resource=resource, lock_id=lock_id, acquired_at=time.time())

    async def release(self, lock: Lock) -> bool:
        if self._holders.get(lock.resource) != lock.lock_id:
            logger.warning(f"Failed to release lock {lock.resource}: not the holder")
            return False

        del self._holders[lock.resource]
        self._locks[lock.resource].release()

        # Drop idle locks so the table does not grow with every project seen
        if not self._waiters.get(lock.resource):
            self._locks.pop(lock.resource, None)
            self._waiters.pop(lock.resource, None)

        logger.debug(f"Released local lock: {lock.resource}")
        return True

    async def is_locked(self, resource: str) -> bool:
        return resource in self._holders


class LockContext:
    """Async context manager for lock acquisition."""

    def __init__(self, lock_manager: LockManager, resource: str, timeout: int = 300):
        """
        Initialize lock context.

        Args:
            lock_manager: LocalLock or RedisLock
            resource: Resource to lock
            timeout: Lock timeout in seconds
        """
        self.lock_manager = lock_manager
        self.resource = resource
        self.timeout = timeout
        self.lock: Optional[Lock] = None

    async def __aenter__(self) -> Lock:
        self.lock = await self.lock_manager.acquire(self.resource, timeout=self.timeout)
        return self.lock

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.lock:
            await self.lock_manager.release(self.lock)
            self.lock = None
