"""Per-project exclusive sections backed by Redis."""

import asyncio
import logging
import time
import uuid

import redis.asyncio as redis
from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Atomic compare-and-delete so only the holder can release
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class Lock(BaseModel):
    """Represents an acquired lock."""
    resource: str
    lock_id: str
    acquired_at: float


class LockTimeoutError(Exception):
    """Raised when lock acquisition times out."""
    pass


class RedisLock:
    """Distributed lock manager, shared by every API worker process."""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "beaver:lock"):
        """
        Initialize Redis lock manager.

        Args:
            redis_client: Redis async client
            key_prefix: Namespace for lock keys
        """
        self.redis = redis_client
        self.key_prefix = key_prefix

    async def acquire(
        self,
        resource: str,
        timeout: int = 300,
        retry_delay: float = 0.05,
        max_retry_delay: float = 1.0
    ) -> Lock:
        """
        Acquire a lock with SET NX EX, retrying with exponential backoff.

        Args:
            resource: Resource to lock (e.g. "project:42")
            timeout: Lock expiry and acquisition deadline in seconds
            retry_delay: Initial retry delay in seconds
            max_retry_delay: Maximum retry delay in seconds

        Returns:
            Lock object if successful

        Raises:
            LockTimeoutError: If lock cannot be acquired within timeout
        """
        lock_key = f"{self.key_prefix}:{resource}"
        lock_id = str(uuid.uuid4())

        deadline = time.time() + timeout
        current_retry_delay = retry_delay

        while time.time() < deadline:
            acquired = await self.redis.set(lock_key, lock_id, ex=timeout, nx=True)
            if acquired:
                logger.debug(f"Acquired lock: {resource} (lock_id: {lock_id})")
                return Lock(resource=resource, lock_id=lock_id, acquired_at=time.time())

            logger.debug(f"Lock {resource} busy, retrying in {current_retry_delay}s")
            await asyncio.sleep(current_retry_delay)
            current_retry_delay = min(current_retry_delay * 2, max_retry_delay)

        raise LockTimeoutError(f"Failed to acquire lock on {resource} within {timeout}s")

    async def release(self, lock: Lock) -> bool:
        """
        Release a lock if still held by this lock_id.

        Returns:
            True if lock was released, False if expired or taken over
        """
        lock_key = f"{self.key_prefix}:{lock.resource}"
        result = await self.redis.eval(RELEASE_SCRIPT, 1, lock_key, lock.lock_id)

        if result:
            logger.debug(f"Released lock: {lock.resource}")
            return True

        logger.warning(f"Failed to release lock {lock.resource}: lock_id mismatch or already expired")
        return False

    async def is_locked(self, resource: str) -> bool:
        exists = await self.redis.exists(f"{self.key_prefix}:{resource}")
        return bool(exists)
