"""
Redis Client: shared async singleton.

Used for short-lived caches (the treasury admin set). Projection state never
lives in Redis.
"""
import asyncio
from urllib.parse import urlparse

import redis.asyncio as aioredis

from bitpay_ingest.core.config import settings
from bitpay_ingest.core.logging import get_logger

logger = get_logger(__name__)

KEY_PREFIX = "bitpay"

_redis_client: aioredis.Redis | None = None
_init_lock = asyncio.Lock()


def _mask_redis_url(url: str) -> str:
    """Hide the password in REDIS_URL for logging (redis://:****@host:6379)."""
    parsed = urlparse(url)
    if parsed.password:
        return url.replace(f":{parsed.password}@", ":****@")
    return url


def redis_key(*parts: object) -> str:
    """Build a namespaced key, e.g. redis_key("treasury", "admins") -> "bitpay:treasury:admins"."""
    return ":".join([KEY_PREFIX, *(str(p) for p in parts)])


async def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton (async, connection pool)."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    async with _init_lock:
        if _redis_client is not None:
            return _redis_client

        client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
        await client.ping()
        _redis_client = client
        logger.info("Redis client initialized", extra_data={
            "url": _mask_redis_url(settings.REDIS_URL),
        })
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection; called on app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
