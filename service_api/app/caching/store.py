"""
Cache store adapter backed by Redis.
"""

from typing import Any, Dict, List, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import CacheStoreError
from shared.logging import get_logger


class CacheStore(Protocol):
    """Key/value store with per-key expiry and glob-pattern deletion.

    Every operation raises CacheStoreError when the backend fails.
    """

    async def get(self, key: str) -> Optional[bytes]: ...

    async def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> bool: ...

    async def delete_matching(self, pattern: str) -> int: ...

    async def key_count(self) -> int: ...

    async def memory_stats(self) -> Dict[str, Any]: ...

    async def delete_persistent_keys(self, pattern: str = "*") -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisCacheStore:
    """CacheStore implementation over redis.asyncio."""

    def __init__(
        self,
        redis_url: str,
        *,
        scan_count: int = 500,
        socket_timeout: float = 1.0,
        socket_connect_timeout: float = 1.0,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.scan_count = scan_count
        self.socket_timeout = socket_timeout
        self.socket_connect_timeout = socket_connect_timeout
        self.logger = get_logger("api.cache_store")
        self._redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                socket_connect_timeout=self.socket_connect_timeout,
                socket_timeout=self.socket_timeout,
            )
        return self._redis

    async def get(self, key: str) -> Optional[bytes]:
        try:
            client = await self._get_redis()
            return await client.get(key)
        except (RedisError, OSError) as exc:
            raise CacheStoreError("get", str(exc), details={"key": key}) from exc

    async def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        try:
            client = await self._get_redis()
            await client.setex(key, ttl_seconds, value)
        except (RedisError, OSError) as exc:
            raise CacheStoreError("set", str(exc), details={"key": key}) from exc

        self.logger.debug("Cached value", key=key, ttl=ttl_seconds)
        return True

    async def delete_matching(self, pattern: str) -> int:
        """Delete every key matching ``pattern``; returns the number removed."""
        try:
            client = await self._get_redis()
            deleted = 0
            batch: List[bytes] = []
            async for key in client.scan_iter(match=pattern, count=self.scan_count):
                batch.append(key)
                if len(batch) >= self.scan_count:
                    deleted += await client.delete(*batch)
                    batch = []
            if batch:
                deleted += await client.delete(*batch)
        except (RedisError, OSError) as exc:
            raise CacheStoreError("delete", str(exc), details={"pattern": pattern}) from exc

        return deleted

    async def key_count(self) -> int:
        try:
            client = await self._get_redis()
            return await client.dbsize()
        except (RedisError, OSError) as exc:
            raise CacheStoreError("dbsize", str(exc)) from exc

    async def memory_stats(self) -> Dict[str, Any]:
        try:
            client = await self._get_redis()
            return await client.info("memory")
        except (RedisError, OSError) as exc:
            raise CacheStoreError("info", str(exc)) from exc

    async def delete_persistent_keys(self, pattern: str = "*") -> int:
        """Remove keys that were written without an expiry."""
        try:
            client = await self._get_redis()
            deleted = 0
            async for key in client.scan_iter(match=pattern, count=self.scan_count):
                # -1: no expiry, -2: already gone
                if await client.ttl(key) == -1:
                    deleted += await client.delete(key)
        except (RedisError, OSError) as exc:
            raise CacheStoreError("cleanup", str(exc), details={"pattern": pattern}) from exc

        return deleted

    async def ping(self) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.ping())
        except (RedisError, OSError) as exc:
            raise CacheStoreError("ping", str(exc)) from exc

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
