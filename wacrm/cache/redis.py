"""Redis cache backend for multi-instance deployments."""

import json
from typing import Any

import redis.asyncio as redis
import structlog

from wacrm.cache.base import CacheBackend

logger = structlog.get_logger()


class RedisCache(CacheBackend):
    """Redis implementation of the cache port.

    Values are stored as JSON text. Counters use INCRBY and get their TTL on
    the increment that created them.
    """

    def __init__(self, url: str, prefix: str = "wacrm:") -> None:
        self._url = url
        self._prefix = prefix
        self._client: redis.Redis | None = None

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._url, encoding="utf-8", decode_responses=True)
            logger.info("Redis cache client initialized")
        return self._client

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Any | None:
        raw = await self._get_client().get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON in cache entry", key=key)
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        await self._get_client().set(self._key(key), json.dumps(value), ex=ttl)

    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        result = await self._get_client().set(self._key(key), json.dumps(value), ex=ttl, nx=True)
        return bool(result)

    async def delete(self, key: str) -> bool:
        return bool(await self._get_client().delete(self._key(key)))

    async def increment(self, key: str, amount: int = 1, ttl: int | None = None) -> int:
        client = self._get_client()
        full_key = self._key(key)
        value = await client.incrby(full_key, amount)
        if ttl and value == amount:
            await client.expire(full_key, ttl)
        return int(value)

    async def health_check(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except Exception as e:
            logger.error("Redis health check failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
