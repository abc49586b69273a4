"""
Async bridge for dramatiq actors.

Actors are plain functions executed by worker threads. Each thread keeps
one event loop for its lifetime, so asyncpg connections never outlive
the loop they were opened on. ``run_exclusive`` adds the distributed
lock every periodic task takes.
"""

import asyncio
import threading
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

from loguru import logger

from atlas.utils.distributed_lock import DistributedLock, get_redis_client

T = TypeVar("T")

_thread_local = threading.local()


def _thread_loop() -> asyncio.AbstractEventLoop:
    loop = getattr(_thread_local, "loop", None)
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        _thread_local.loop = loop
        logger.debug(f"Event loop created for {threading.current_thread().name}")
    return loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine to completion on the calling thread's loop."""
    return _thread_loop().run_until_complete(coro)


async def run_exclusive(
    key: str, timeout: int, body: Callable[[], Awaitable[T]]
) -> T | None:
    """
    Await ``body()`` while holding the distributed lock ``key``.

    Args:
        key: Lock name, usually the task name
        timeout: Lock expiry in seconds; must exceed the task time limit
        body: Coroutine factory doing the work

    Returns:
        The body's result, or None when another worker holds the lock
    """
    redis_client = await get_redis_client()
    try:
        async with DistributedLock(redis_client=redis_client).lock(
            key, timeout=timeout
        ) as acquired:
            if not acquired:
                return None
            return await body()
    finally:
        await redis_client.aclose()
