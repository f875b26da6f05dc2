"""
Distributed cache/counter store adapter.

Thin async wrapper over ``redis.asyncio`` exposing exactly the primitives the
core needs: get, set with TTL, delete, atomic increment-with-expiry and atomic
delete-by-pattern. Every store failure is raised as ``CacheStoreError`` so
callers can apply their own degradation policy.
"""

import asyncio
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from edge_shared.logging import get_logger

# INCR and the first-hit EXPIRE run as one script: a window never lacks a TTL.
INCREMENT_WITH_EXPIRY_SCRIPT = """
local count = redis.call("INCR", KEYS[1])
if count == 1 then
    redis.call("EXPIRE", KEYS[1], ARGV[1])
end
return count
"""

# Runs atomically on the server; readers never observe a partial flush.
DELETE_PATTERN_SCRIPT = """
local cursor = "0"
local deleted = 0
repeat
    local result = redis.call("SCAN", cursor, "MATCH", ARGV[1], "COUNT", 500)
    cursor = result[1]
    local keys = result[2]
    if #keys > 0 then
        deleted = deleted + redis.call("DEL", unpack(keys))
    end
until cursor == "0"
return deleted
"""


class CacheStoreError(Exception):
    """The shared store could not be reached or rejected a command."""

    def __init__(self, operation: str, error: Exception):
        self.operation = operation
        self.error = error
        super().__init__(f"Cache store {operation} failed: {error}")


class RedisStore:
    """Async key-value/counter store backed by Redis."""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        if redis_url is None and client is None:
            raise ValueError("RedisStore requires a redis_url or a client")
        self.redis_url = redis_url
        self.logger = get_logger("edge.store")
        self._redis: Optional[redis.Redis] = client
        self._increment_script = None
        self._delete_pattern_script = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        try:
            client = await self._get_redis()
            value = await client.get(key)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise CacheStoreError("get", e) from e
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            client = await self._get_redis()
            await client.set(key, value, ex=ttl)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise CacheStoreError("set", e) from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            client = await self._get_redis()
            return int(await client.delete(*keys))
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise CacheStoreError("delete", e) from e

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern in one atomic step."""
        try:
            client = await self._get_redis()
            if self._delete_pattern_script is None:
                self._delete_pattern_script = client.register_script(DELETE_PATTERN_SCRIPT)
            deleted = await self._delete_pattern_script(keys=[], args=[pattern])
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise CacheStoreError("delete_pattern", e) from e
        return int(deleted or 0)

    async def increment_with_expiry(self, key: str, ttl: int) -> int:
        """Atomically increment a counter, setting its expiry on first hit."""
        try:
            client = await self._get_redis()
            if self._increment_script is None:
                self._increment_script = client.register_script(INCREMENT_WITH_EXPIRY_SCRIPT)
            count = await self._increment_script(keys=[key], args=[ttl])
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise CacheStoreError("increment", e) from e
        return int(count)

    async def ttl(self, key: str) -> int:
        try:
            client = await self._get_redis()
            return int(await client.ttl(key))
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise CacheStoreError("ttl", e) from e

    async def ping(self) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.ping())
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            self.logger.warning("Store ping failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
