"""
Courier response cache

Thin JSON wrapper over Redis with get / set / delete / get_or_set and
pattern-based invalidation.

The cache is advisory: every backend failure is logged and treated as a
miss (reads) or a no-op (writes). Only producer errors passed to
get_or_set reach the caller, and nothing is cached in that case.

Key format:
    <namespace>:<provider>:<method>:<canonical JSON of params>
"""
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from courier_aggregator.core.redis_client import get_redis

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "courier"


def make_cache_key(
    namespace: str,
    provider: str,
    method: str,
    params: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Build a deterministic cache key.

    Params are serialized with sorted keys so logically identical requests
    land in the same slot regardless of argument order.
    """
    serialized = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)
    return f"{namespace}:{provider.lower()}:{method}:{serialized}"


class CacheService:
    """
    JSON cache over an async Redis client.

    Usage:
        cache = CacheService()
        cities = await cache.get_or_set(key, fetch_cities, ttl_seconds=86400)
    """

    def __init__(
        self,
        redis_client=None,
        client_getter: Callable[[], Awaitable[Any]] = get_redis,
    ):
        self._redis_client = redis_client
        self._client_getter = client_getter

    async def _client(self):
        if self._redis_client is not None:
            return self._redis_client
        try:
            return await self._client_getter()
        except Exception as e:
            logger.warning(f"[CACHE] Backend unavailable: {e}")
            return None

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on miss or backend failure."""
        client = await self._client()
        if not client:
            return None

        try:
            raw = await client.get(key)
        except Exception as e:
            logger.warning(f"[CACHE] get failed for {key}: {e}")
            return None

        if raw is None:
            return None

        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"[CACHE] Discarding undecodable entry {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Store value with expiry. Returns False when the backend is unavailable."""
        client = await self._client()
        if not client:
            return False

        try:
            await client.set(key, json.dumps(value, default=str), ex=int(ttl_seconds))
            return True
        except Exception as e:
            logger.warning(f"[CACHE] set failed for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        client = await self._client()
        if not client:
            return False

        try:
            await client.delete(key)
            return True
        except Exception as e:
            logger.warning(f"[CACHE] delete failed for {key}: {e}")
            return False

    async def get_or_set(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        ttl_seconds: int,
    ) -> Any:
        """
        Return the cached value for key, or call producer once and cache its result.

        Args:
            key: Cache key
            producer: Zero-argument coroutine function fetching the live value
            ttl_seconds: Expiry applied when the produced value is stored

        Returns:
            Cached or freshly produced value

        Raises:
            Whatever producer raises. Failed productions are never cached.
        """
        cached = await self.get(key)
        if cached is not None:
            logger.debug(f"[CACHE] hit {key}")
            return cached

        logger.debug(f"[CACHE] miss {key}")
        value = await producer()
        await self.set(key, value, ttl_seconds)
        return value

    async def clear_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern. Returns the number of keys removed."""
        client = await self._client()
        if not client:
            return 0

        try:
            keys = [key async for key in client.scan_iter(match=pattern)]
            if keys:
                await client.delete(*keys)
            logger.info(f"[CACHE] Cleared {len(keys)} keys matching {pattern}")
            return len(keys)
        except Exception as e:
            logger.warning(f"[CACHE] clear failed for pattern {pattern}: {e}")
            return 0
