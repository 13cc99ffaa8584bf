"""
Key/value cache with expiry, used for read-through caching of counterparty templates.

The cache is optional. Every failure is logged and reported as a miss so that
no caller ever fails because Redis is down.
"""

import json
import logging
from typing import Any, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from invoice_intake.core.config import settings

logger = logging.getLogger(__name__)


class ICache(Protocol):
    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def close(self) -> None:
        ...


class NullCache:
    """Cache that never stores anything."""

    async def get(self, key: str) -> Any | None:
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        return None

    async def delete(self, key: str) -> None:
        return None

    async def close(self) -> None:
        return None


class RedisCache:
    """JSON values in Redis via SETEX."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._client.get(key)
        except RedisError as e:
            logger.warning("Cache get failed for %s (treated as miss): %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self._client.setex(key, ttl_seconds, json.dumps(value, default=str))
        except RedisError as e:
            logger.warning("Cache set failed for %s: %s", key, e)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as e:
            logger.warning("Cache delete failed for %s: %s", key, e)

    async def close(self) -> None:
        await self._client.aclose()


def build_cache() -> ICache:
    if not settings.REDIS_URL.strip():
        logger.info("REDIS_URL not set, template cache disabled")
        return NullCache()
    return RedisCache.from_url(settings.REDIS_URL)
