"""Persistent key-value backends for the durable cache tier.

This module provides the KeyValueStore protocol and two backends:
RedisStore (durable, connection-pooled) and MemoryStore (process-local).
Backends raise StorageError on failure; the cache managers decide how to
degrade.
"""

import fnmatch
from typing import Dict, List, Optional, Protocol

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

import structlog

from newscache.exceptions import StorageError

logger = structlog.get_logger(__name__)


class KeyValueStore(Protocol):
    """String-to-string store shared by every cache component."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def delete(self, *keys: str) -> int:
        ...

    async def keys(self, pattern: str = "*") -> List[str]:
        ...

    async def close(self) -> None:
        ...


class MemoryStore:
    """
    Dictionary-backed store.

    Not durable across restarts. Used when no Redis URL is configured and
    as the backend for tests.

    Attributes:
        quota_bytes: Optional limit on the total size of stored values;
            writes beyond it raise StorageError like a full browser store
    """

    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        self._data: Dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def _size(self) -> int:
        return sum(len(v.encode("utf-8")) for v in self._data.values())

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            current = self._size() - len(self._data.get(key, "").encode("utf-8"))
            if current + len(value.encode("utf-8")) > self.quota_bytes:
                raise StorageError("Storage quota exceeded", key=key)
        self._data[key] = value

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def keys(self, pattern: str = "*") -> List[str]:
        return [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]

    async def close(self) -> None:
        return None


class RedisStore:
    """
    Redis-backed durable store with connection pooling.

    Provides connection pool management, health checks and translation of
    Redis errors into StorageError.

    Attributes:
        pool: Redis connection pool
        client: Redis client instance
    """

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        pool: Optional[ConnectionPool] = None,
    ) -> None:
        self.pool = pool
        self.client = client

    @classmethod
    def from_url(cls, redis_url: str, max_connections: int = 10) -> "RedisStore":
        """
        Create a store from a Redis URL.

        Args:
            redis_url: Connection URL, e.g. redis://localhost:6379/0
            max_connections: Pool size

        Returns:
            RedisStore; its client is None when the pool could not be
            created, in which case every operation raises StorageError

        Example:
            >>> store = RedisStore.from_url("redis://localhost:6379/0")
            >>> healthy = await store.ping()
        """
        try:
            pool = ConnectionPool.from_url(
                redis_url,
                max_connections=max_connections,
                decode_responses=True,  # Auto-decode bytes to str
                socket_timeout=5,
                socket_connect_timeout=5,
                retry_on_timeout=True,
            )
            client = redis.Redis(connection_pool=pool)

            logger.info(
                "redis_pool_initialized",
                max_connections=max_connections,
                redis_url=redis_url.split("@")[-1],  # Don't log credentials
            )
            return cls(client=client, pool=pool)

        except Exception as e:
            logger.error(
                "redis_pool_initialization_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return cls()

    def _require_client(self, key: Optional[str] = None) -> redis.Redis:
        if self.client is None:
            raise StorageError("Redis client not initialized", key=key)
        return self.client

    async def get(self, key: str) -> Optional[str]:
        client = self._require_client(key)
        try:
            return await client.get(key)
        except Exception as e:
            raise StorageError(f"get failed: {e}", key=key) from e

    async def set(self, key: str, value: str) -> None:
        client = self._require_client(key)
        try:
            await client.set(key, value)
        except Exception as e:
            raise StorageError(f"set failed: {e}", key=key) from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        client = self._require_client()
        try:
            return int(await client.delete(*keys))
        except Exception as e:
            raise StorageError(f"delete failed: {e}") from e

    async def keys(self, pattern: str = "*") -> List[str]:
        client = self._require_client()
        try:
            return [key async for key in client.scan_iter(match=pattern)]
        except Exception as e:
            raise StorageError(f"scan failed: {e}") from e

    async def ping(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if Redis is healthy, False otherwise
        """
        if not self.client:
            logger.warning("redis_ping_failed", reason="client_not_initialized")
            return False

        try:
            result = await self.client.ping()
            logger.debug("redis_ping_success", result=result)
            return bool(result)

        except Exception as e:
            logger.error(
                "redis_ping_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def close(self) -> None:
        """
        Close the Redis client and pool gracefully.

        Should be called during application shutdown.
        """
        try:
            if self.client:
                await self.client.aclose()
                logger.info("redis_client_closed")

            if self.pool:
                await self.pool.disconnect()
                logger.info("redis_pool_disconnected")

        except Exception as e:
            logger.error(
                "redis_close_error",
                error=str(e),
                error_type=type(e).__name__,
            )

    def is_available(self) -> bool:
        """
        Check if the Redis client is available.

        Note:
            This only checks if the client exists, not if Redis is reachable.
            Use ping() for a real health check.
        """
        return self.client is not None
