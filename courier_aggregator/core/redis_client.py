"""
Redis client for the courier aggregation layer

Backs the courier response cache and the issued-token cache.
Returns None when REDIS_URL is not configured, or while Redis is unreachable,
so every caller can degrade to a live fetch.

After a failed connection no new attempt is made for
REDIS_RECONNECT_SECONDS; cache calls during that window cost nothing.
"""
import logging
import time
from typing import Optional
import redis.asyncio as redis
from courier_aggregator.core.config import settings

logger = logging.getLogger(__name__)

# Global Redis client (initialized lazily)
_redis_client: Optional[redis.Redis] = None
_last_failure: Optional[float] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get Redis client, connecting if needed.

    Returns None if REDIS_URL is not configured, or if the last connection
    attempt failed less than REDIS_RECONNECT_SECONDS ago.
    """
    global _redis_client, _last_failure

    if not settings.REDIS_URL:
        return None

    if _redis_client is not None:
        return _redis_client

    if _last_failure is not None and time.monotonic() - _last_failure < settings.REDIS_RECONNECT_SECONDS:
        return None

    client = redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
    )
    try:
        await client.ping()
    except Exception as e:
        _last_failure = time.monotonic()
        logger.warning(
            f"[CACHE] Redis connection failed: {e}. "
            f"Courier cache disabled for {settings.REDIS_RECONNECT_SECONDS:.0f}s"
        )
        await client.aclose()
        return None

    _redis_client = client
    _last_failure = None
    logger.info("[CACHE] Redis connection established")
    return _redis_client


async def close_redis():
    """Close the shared connection. The next get_redis() reconnects."""
    global _redis_client
    client, _redis_client = _redis_client, None
    if client is not None:
        await client.aclose()
        logger.info("[CACHE] Redis connection closed")
