"""Key-value store backends with per-key TTL.

The checkpoint saver, the state reference store and the classification
cache all talk to storage through ``BaseKVStore``:
- get / set(key, value, ttl_seconds) / delete / keys(pattern)
- expire: refresh a key's TTL
- ping: round-trip health probe

There are no multi-key transactions; callers tolerate read-after-write
eventual consistency within the TTL window.
"""

import fnmatch
import time
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
)

from redis import asyncio as aioredis

from voyageflow.core.config import settings
from voyageflow.core.logging import logger


class BaseKVStore(ABC):
    """Abstract string key-value store with TTL support."""

    name: str = "base"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get a value, or None when missing or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Store a value, optionally expiring after ``ttl_seconds``."""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys and return how many existed."""

    @abstractmethod
    async def keys(self, pattern: str) -> List[str]:
        """List live keys matching a glob-style pattern."""

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Reset the TTL of an existing key."""

    @abstractmethod
    async def ttl(self, key: str) -> Optional[int]:
        """Seconds until the key expires, None when it has no TTL or is missing."""

    async def exists(self, key: str) -> bool:
        """Check whether a key is present."""
        return await self.get(key) is not None

    async def ping(self) -> bool:
        """Check that the backend answers."""
        return True

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryKVStore(BaseKVStore):
    """Process-local store used in tests and as a durability fallback."""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """Initialize an empty store.

        Args:
            clock: Monotonic time source, injectable for TTL tests.
        """
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _alive(self, key: str) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return False
        return True

    async def get(self, key: str) -> Optional[str]:
        if not self._alive(key):
            return None
        return self._data[key][0]

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, expires_at)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._alive(key):
                del self._data[key]
                removed += 1
        return removed

    async def keys(self, pattern: str) -> List[str]:
        return sorted(k for k in list(self._data) if fnmatch.fnmatchcase(k, pattern) and self._alive(k))

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        if not self._alive(key):
            return False
        value, _ = self._data[key]
        self._data[key] = (value, self._clock() + ttl_seconds)
        return True

    async def ttl(self, key: str) -> Optional[int]:
        if not self._alive(key):
            return None
        expires_at = self._data[key][1]
        if expires_at is None:
            return None
        return max(0, int(expires_at - self._clock()))


class RedisKVStore(BaseKVStore):
    """Redis-backed store using ``redis.asyncio``."""

    name = "redis"

    def __init__(self, url: str, client: Optional[aioredis.Redis] = None):
        """Initialize the Redis client.

        Args:
            url: Redis connection URL.
            client: Pre-built client, mainly for tests.
        """
        self.url = url
        self._client = client or aioredis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        if ttl_seconds:
            await self._client.set(key, value, ex=int(ttl_seconds))
        else:
            await self._client.set(key, value)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._client.delete(*keys))

    async def keys(self, pattern: str) -> List[str]:
        found = [key async for key in self._client.scan_iter(match=pattern, count=500)]
        return sorted(found)

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(await self._client.expire(key, int(ttl_seconds)))

    async def ttl(self, key: str) -> Optional[int]:
        remaining = await self._client.ttl(key)
        return remaining if remaining is not None and remaining >= 0 else None

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


def create_kv_store(url: Optional[str] = None) -> BaseKVStore:
    """Build the configured store: Redis when a URL is set, memory otherwise.

    Args:
        url: Redis URL, defaults to settings.REDIS_URL.

    Returns:
        BaseKVStore: The store instance.
    """
    redis_url = url if url is not None else settings.REDIS_URL
    if redis_url:
        logger.info("kv_store_created", backend="redis")
        return RedisKVStore(redis_url)

    logger.warning("kv_store_in_memory", reason="REDIS_URL not set")
    return InMemoryKVStore()
