"""Keyed store for retry counters and cached results - Redis + in-memory fallback."""
import json
import logging
import time
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from talentbrain.config import REDIS_URL

logger = logging.getLogger(__name__)


class CacheBackend:
    """Abstract async cache interface."""

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl: int = 3600):
        raise NotImplementedError

    async def delete(self, key: str):
        raise NotImplementedError

    async def clear(self):
        raise NotImplementedError

    async def ping(self) -> bool:
        return True


class RedisCache(CacheBackend):
    """Redis-backed cache (shared across server instances)."""

    def __init__(self, url: str, namespace: str = "talentbrain"):
        self.client = aioredis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        self.namespace = namespace
        logger.info(f"✅ Redis cache configured: {url.rsplit('@', 1)[-1]}")

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self.client.get(self._key(key))
            if value:
                logger.debug(f"Cache HIT: {key[:50]}...")
                return json.loads(value)
            logger.debug(f"Cache MISS: {key[:50]}...")
            return None
        except (RedisError, ValueError) as e:
            logger.warning(f"Redis GET error: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600):
        try:
            await self.client.setex(self._key(key), ttl, json.dumps(value))
            logger.debug(f"Cache SET: {key[:50]}... (TTL: {ttl}s)")
        except (RedisError, TypeError) as e:
            logger.warning(f"Redis SET error: {e}")

    async def delete(self, key: str):
        try:
            await self.client.delete(self._key(key))
        except RedisError as e:
            logger.warning(f"Redis DELETE error: {e}")

    async def clear(self):
        try:
            keys = [k async for k in self.client.scan_iter(match=f"{self.namespace}:*")]
            if keys:
                await self.client.delete(*keys)
            logger.info("Redis cache cleared")
        except RedisError as e:
            logger.warning(f"Redis CLEAR error: {e}")

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.warning(f"Redis PING error: {e}")
            return False


class InMemoryCache(CacheBackend):
    """In-memory cache with TTL and oldest-first eviction (single-server only)."""

    def __init__(self, max_size: int = 1000, clock=time.monotonic):
        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._max_size = max_size
        self._clock = clock
        logger.info(f"✅ In-memory cache initialized (max_size={max_size})")

    async def get(self, key: str) -> Optional[Any]:
        entry = self._cache.get(key)
        if entry is None:
            logger.debug(f"Cache MISS: {key[:50]}...")
            return None

        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._cache[key]
            logger.debug(f"Cache EXPIRED: {key[:50]}...")
            return None

        logger.debug(f"Cache HIT: {key[:50]}...")
        return value

    async def set(self, key: str, value: Any, ttl: int = 3600):
        if key not in self._cache and len(self._cache) >= self._max_size:
            oldest_key = next(iter(self._cache))
            del self._cache[oldest_key]

        self._cache[key] = (self._clock() + ttl, value)
        logger.debug(f"Cache SET: {key[:50]}... (size: {len(self._cache)})")

    async def delete(self, key: str):
        self._cache.pop(key, None)

    async def clear(self):
        self._cache.clear()
        logger.info("In-memory cache cleared")

    def __len__(self) -> int:
        return len(self._cache)


@lru_cache(maxsize=1)
def get_cache() -> CacheBackend:
    """
    Get cache singleton.

    Priority:
    1. Redis (if REDIS_URL is set)
    2. In-memory fallback
    """
    if REDIS_URL:
        return RedisCache(REDIS_URL)

    logger.warning("⚠️  REDIS_URL not set - retry and result state is local to this process")
    return InMemoryCache(max_size=1000)
