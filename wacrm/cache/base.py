"""Abstract key-value cache with TTL and atomic counters."""

from abc import ABC, abstractmethod
from typing import Any


class CacheBackend(ABC):
    """Key-value cache port used for response caching, rate limits and debounce locks.

    Values are JSON-serialisable. A ``ttl`` of None means no expiry.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Get a value, or None when missing or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Set a value, replacing any existing one."""
        ...

    @abstractmethod
    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Set a value only when the key is absent. Returns True if it was set."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""
        ...

    @abstractmethod
    async def increment(self, key: str, amount: int = 1, ttl: int | None = None) -> int:
        """Atomically add ``amount`` and return the new value.

        The TTL is applied only when the increment created the key, so the
        window is fixed from the first hit.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the cache is reachable."""
        ...

    async def close(self) -> None:
        """Release connections, if any."""
        return None
