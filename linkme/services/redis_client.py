# linkme/services/redis_client.py
from collections.abc import Callable

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError, WatchError

from linkme.config import settings
from linkme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SCAN_PAGE_SIZE = 500


class RedisClientError(Exception):
    """Raised when a Redis command fails at the transport level."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class FastRedisClient:
    """Pooled async Redis client shared by the record store, queues and leases."""

    def __init__(self, url: str | None = None, max_connections: int = 20):
        self.url = url or settings.REDIS_URL
        self.max_connections = max_connections
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            logger.info("Attempting Redis connection", url_preview=self.url[:30] + "...")

            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=self.max_connections,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Redis client initialized", max_connections=self.max_connections)

        except Exception as e:
            logger.error("Failed to initialize Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()
            if not self._initialized:
                raise ConnectionError("Redis client not available")

    def _fail(self, operation: str, key: str, error: Exception) -> RedisClientError:
        logger.error(f"Redis {operation} failed", key=key[:40], error=str(error))
        return RedisClientError(f"Redis {operation} failed: {error}", operation=operation)

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            result = await self.client.ping()
            return bool(result)
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> str | None:
        try:
            await self._ensure_initialized()
            return await self.client.get(key)
        except (RedisError, ConnectionError, RuntimeError) as e:
            raise self._fail("GET", key, e) from e

    async def set(self, key: str, value: str) -> bool:
        try:
            await self._ensure_initialized()
            return bool(await self.client.set(key, value))
        except (RedisError, ConnectionError, RuntimeError) as e:
            raise self._fail("SET", key, e) from e

    async def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool:
        """SET NX EX; True when this caller now owns the key."""
        try:
            await self._ensure_initialized()
            return bool(await self.client.set(key, value, nx=True, ex=ttl_s))
        except (RedisError, ConnectionError, RuntimeError) as e:
            raise self._fail("SETNX", key, e) from e

    async def compare_and_set(
        self, key: str, value: str, check: Callable[[str | None], bool]
    ) -> bool:
        """
        Write value only if check(current value) holds, atomically.

        Uses WATCH/MULTI so a concurrent writer between the read and the
        write aborts this transaction instead of being overwritten.

        Returns:
            bool: False when the check failed or the key changed underneath
        """
        try:
            await self._ensure_initialized()
            async with self.client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                current = await pipe.get(key)
                if not check(current):
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(key, value)
                await pipe.execute()
                return True
        except WatchError:
            logger.debug("Redis CAS lost race", key=key[:40])
            return False
        except (RedisError, ConnectionError, RuntimeError) as e:
            raise self._fail("CAS", key, e) from e

    async def delete(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            return await self.client.delete(key) > 0
        except (RedisError, ConnectionError, RuntimeError) as e:
            raise self._fail("DELETE", key, e) from e

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        """Delete key only while it still holds expected."""
        try:
            await self._ensure_initialized()
            async with self.client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                if await pipe.get(key) != expected:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.delete(key)
                await pipe.execute()
                return True
        except WatchError:
            return False
        except (RedisError, ConnectionError, RuntimeError) as e:
            raise self._fail("CAD", key, e) from e

    async def scan_keys(self, prefix: str) -> list[str]:
        """All keys under prefix, in SCAN order, each at most once."""
        try:
            await self._ensure_initialized()
            keys = [
                key async for key in self.client.scan_iter(match=f"{prefix}*", count=SCAN_PAGE_SIZE)
            ]
            # SCAN may repeat keys across a rehash
            return list(dict.fromkeys(keys))
        except (RedisError, ConnectionError, RuntimeError) as e:
            raise self._fail("SCAN", prefix, e) from e

    async def lpush(self, key: str, value: str) -> int:
        try:
            await self._ensure_initialized()
            return int(await self.client.lpush(key, value))
        except (RedisError, ConnectionError, RuntimeError) as e:
            raise self._fail("LPUSH", key, e) from e

    async def lmove(self, source: str, destination: str) -> str | None:
        """Pop the oldest element of source onto destination (reliable queue)."""
        try:
            await self._ensure_initialized()
            return await self.client.lmove(source, destination, "RIGHT", "LEFT")
        except (RedisError, ConnectionError, RuntimeError) as e:
            raise self._fail("LMOVE", source, e) from e

    async def lrem(self, key: str, value: str) -> int:
        try:
            await self._ensure_initialized()
            return int(await self.client.lrem(key, 1, value))
        except (RedisError, ConnectionError, RuntimeError) as e:
            raise self._fail("LREM", key, e) from e

    async def llen(self, key: str) -> int:
        try:
            await self._ensure_initialized()
            return int(await self.client.llen(key))
        except (RedisError, ConnectionError, RuntimeError) as e:
            raise self._fail("LLEN", key, e) from e


# Global instance
fast_redis = FastRedisClient()
