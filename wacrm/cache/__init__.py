"""Cache layer - Redis and in-memory implementations."""

from wacrm.cache.base import CacheBackend
from wacrm.cache.memory import InMemoryCache
from wacrm.cache.redis import RedisCache

__all__ = ["CacheBackend", "InMemoryCache", "RedisCache"]
