"""Redis client factory — used for cross-process locks only.

Balances never live in Redis; the funding account row in PostgreSQL is the
source of truth. Redis only serializes funds-retry batches across workers.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from redis.asyncio.lock import Lock
from redis.exceptions import LockError

from config.settings import settings
from src.gf_common.errors import ConflictError

logger = logging.getLogger(__name__)

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    """Get or create the Redis connection pool."""
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None


@asynccontextmanager
async def redis_lock(name: str) -> AsyncIterator[None]:
    """Hold a named Redis lock for the duration of the block.

    Waits up to FUNDS_RETRY_LOCK_WAIT_SECONDS. While the block runs the lock
    is renewed every third of FUNDS_RETRY_LOCK_TIMEOUT_SECONDS, so a long
    batch keeps it; a crashed holder stops renewing and the lock expires.
    """
    client = await get_redis()
    lock = client.lock(
        f"gf:lock:{name}",
        timeout=settings.FUNDS_RETRY_LOCK_TIMEOUT_SECONDS,
        blocking_timeout=settings.FUNDS_RETRY_LOCK_WAIT_SECONDS,
    )
    acquired = await lock.acquire()
    if not acquired:
        raise ConflictError(f"Lock {name} is held by another worker")
    keeper = asyncio.create_task(_keep_alive(lock, name))
    try:
        yield
    finally:
        keeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await keeper
        try:
            await lock.release()
        except LockError:
            # Expired while held; the next holder already owns it
            logger.warning("Lock %s expired before release", name)


async def _keep_alive(lock: Lock, name: str) -> None:
    interval = settings.FUNDS_RETRY_LOCK_TIMEOUT_SECONDS / 3
    while True:
        await asyncio.sleep(interval)
        try:
            await lock.reacquire()
        except LockError:
            logger.warning("Lock %s lost while held", name)
            return
