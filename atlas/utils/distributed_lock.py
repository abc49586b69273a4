"""
Distributed lock.

Redis-based mutual exclusion for scheduled jobs, so that two workers do
not run the same periodic task at once. Correctness of the ledger does
not depend on it (row locks do that); it only avoids wasted work and
lock contention.
"""

import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from loguru import logger

from atlas.config.settings import settings

# Delete the key only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

KEY_PREFIX = "atlas:lock:"


async def get_redis_client() -> redis.Redis:
    """
    Create a Redis client from settings.

    Returns:
        redis.Redis with decode_responses=True
    """
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)


class DistributedLock:
    """
    Non-blocking Redis lock.

    Usage:
        lock = DistributedLock(redis_client=client)
        async with lock.lock("process_cycles", timeout=300) as acquired:
            if acquired:
                ...
    """

    def __init__(self, redis_client: redis.Redis | None = None) -> None:
        self.redis_client = redis_client

    async def acquire(self, key: str, timeout: int) -> str | None:
        """
        Try to take the lock once.

        Args:
            key: Lock name
            timeout: Expiry in seconds

        Returns:
            Owner token, or None if another holder has the lock
        """
        token = secrets.token_hex(16)
        acquired = await self.redis_client.set(
            KEY_PREFIX + key, token, nx=True, ex=timeout
        )
        return token if acquired else None

    async def release(self, key: str, token: str) -> bool:
        released = await self.redis_client.eval(_RELEASE_SCRIPT, 1, KEY_PREFIX + key, token)
        return bool(released)

    @asynccontextmanager
    async def lock(self, key: str, timeout: int = 60) -> AsyncIterator[bool]:
        """
        Hold the lock for the duration of the block.

        Yields True when acquired, False when another worker holds it.
        Without a Redis client the block runs unguarded and yields True.
        """
        if self.redis_client is None:
            logger.warning(f"No Redis client, running '{key}' without distributed lock")
            yield True
            return

        token = await self.acquire(key, timeout)
        if token is None:
            logger.info(f"Lock '{key}' is held by another worker, skipping")
            yield False
            return

        try:
            yield True
        finally:
            if not await self.release(key, token):
                logger.warning(f"Lock '{key}' expired before release")
