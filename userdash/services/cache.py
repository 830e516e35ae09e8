"""Read-through cache for dashboard stats.

Flow:  GET /users/stats/* → cache hit  → return
                          → cache miss → aggregate from the repo
                                       → store with TTL → return

Every write (create/update/delete) deletes the "stats:*" keys, and the
TTL bounds staleness if an invalidation is ever missed (for example a
second API instance writing to the same database without Redis).
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from userdash.core.metrics import CACHE_OPERATIONS
from userdash.db.redis import redis_pool


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value with a TTL."""
        ...

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching a trailing-* glob (e.g. 'stats:*')."""
        ...


class InMemoryCacheService:
    """In-memory cache without TTL enforcement.

    The autouse fixture in conftest.py clears the store between tests.
    """

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        value = self._store.get(key)
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = value

    async def delete_pattern(self, pattern: str) -> None:
        prefix = pattern.rstrip("*")
        for k in [k for k in self._store if k.startswith(prefix)]:
            del self._store[k]


class RedisCacheService:
    """Redis-backed cache shared by all API instances."""

    _PREFIX = "userdash:cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        value = await self._redis.get(f"{self._PREFIX}{key}")
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def delete_pattern(self, pattern: str) -> None:
        # SCAN rather than KEYS so a large keyspace never blocks Redis
        cursor = 0
        while True:
            cursor, keys = await self._redis.scan(
                cursor, match=f"{self._PREFIX}{pattern}", count=100
            )
            if keys:
                await self._redis.delete(*keys)
            if cursor == 0:
                break


if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
