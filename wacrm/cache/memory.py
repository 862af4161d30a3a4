"""In-memory cache for development and testing."""

import asyncio
import copy
import time
from collections.abc import Callable
from typing import Any

from wacrm.cache.base import CacheBackend


class InMemoryCache(CacheBackend):
    """Process-local cache with lazy expiry.

    Args:
        clock: Monotonic seconds source; tests pass a fake clock to move time.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._data: dict[str, tuple[Any, float | None]] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    def _expiry(self, ttl: int | None) -> float | None:
        return self._clock() + ttl if ttl else None

    def _live(self, key: str) -> tuple[Any, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> Any | None:
        entry = self._live(key)
        return copy.deepcopy(entry[0]) if entry else None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self._data[key] = (copy.deepcopy(value), self._expiry(ttl))

    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (copy.deepcopy(value), self._expiry(ttl))
            return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def increment(self, key: str, amount: int = 1, ttl: int | None = None) -> int:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                self._data[key] = (amount, self._expiry(ttl))
                return amount
            value, expires_at = entry
            value = int(value) + amount
            self._data[key] = (value, expires_at)
            return value

    async def health_check(self) -> bool:
        return True

    async def clear(self) -> None:
        """Drop every key (for testing)."""
        self._data.clear()
