"""Redis cache backend with automatic retry and connection pooling.

Transient connection faults are retried a small number of times; whatever
still fails is logged at WARNING and turned into a miss or a no-op. After a
fault the backend reports itself unavailable until a throttled PING
succeeds again, so the cache service stops paying timeouts on every request.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, cast

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from bandera_service.core.settings import get_redis_settings
from bandera_service.infra.metrics.tracking import (
    track_cache_error,
    track_cache_lookup,
    track_cache_operation,
)
from bandera_service.utils.retry import RetryError, retry

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from bandera_service.core.settings.redis import RedisSettings

logger = logging.getLogger(__name__)
redis_settings = get_redis_settings()

# Keys removed per DEL round-trip during pattern deletes
DELETE_BATCH_SIZE = 500

_TRANSIENT = (RedisConnectionError, RedisTimeoutError)


class RedisCacheBackend:
    """Shared cache backend on top of ``redis.asyncio``.

    Every key is stored under ``key_prefix`` so several services can share
    one Redis database.

    Example:
        backend = RedisCacheBackend(key_prefix="bandera:cache:")
        await backend.connect()
        await backend.set("flag:123", b"...", ttl=300)
        await backend.disconnect()
    """

    name = "redis"

    def __init__(
        self,
        settings: RedisSettings | None = None,
        key_prefix: str = "bandera:cache:",
        client: Redis | None = None,
    ) -> None:
        self._settings = settings or redis_settings
        self._key_prefix = key_prefix
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = client
        self._healthy = client is not None
        self._next_health_check_at = 0.0

    async def connect(self) -> None:
        """Open the connection pool and verify it with a PING.

        Raises:
            RedisError: If Redis cannot be reached.
        """
        logger.info(
            "Connecting to Redis",
            extra={
                "host": self._settings.host,
                "port": self._settings.port,
                "db": self._settings.db,
                "max_connections": self._settings.max_connections,
            },
        )
        self._pool = ConnectionPool.from_url(
            self._settings.url,
            **self._settings.connection_pool_kwargs(),
        )
        self._client = Redis(connection_pool=self._pool)
        try:
            await cast("Awaitable[bool]", self._client.ping())
        except RedisError:
            await self.disconnect()
            raise
        self._healthy = True
        logger.info("Redis connection established successfully")

    async def disconnect(self) -> None:
        if self._client is not None:
            await cast("Any", self._client).aclose()
            self._client = None
        if self._pool is not None:
            await cast("Any", self._pool).aclose()
            self._pool = None
        self._healthy = False
        logger.info("Redis connection closed")

    @property
    def client(self) -> Redis:
        """Get the Redis client instance.

        Raises:
            RuntimeError: If not connected.
        """
        if self._client is None:
            msg = "Redis client not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._client

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    # ──────────────────────────────────────────────────────────────
    # Backend contract
    # ──────────────────────────────────────────────────────────────

    async def get(self, key: str) -> bytes | None:
        if self._client is None:
            return None
        start = time.perf_counter()
        try:
            value = await self._get(self._key(key))
        except (RedisError, RetryError) as e:
            self._record_fault("get", key, e)
            return None
        track_cache_lookup(self.name, hit=value is not None)
        track_cache_operation("get", self.name, time.perf_counter() - start)
        return value

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        if self._client is None:
            return
        start = time.perf_counter()
        try:
            await self._set(self._key(key), value, ttl)
        except (RedisError, RetryError) as e:
            self._record_fault("set", key, e)
            return
        track_cache_operation("set", self.name, time.perf_counter() - start)

    async def delete(self, key: str) -> None:
        """Delete one key. Attempted even while unhealthy; success clears the fault."""
        if self._client is None:
            return
        try:
            await self._delete(self._key(key))
        except (RedisError, RetryError) as e:
            self._record_fault("delete", key, e)
            return
        self._mark_recovered()

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching ``pattern`` using SCAN + DEL.

        This walks the whole keyspace (O(n) in the number of keys). It is
        acceptable at this service's scale; a secondary index from flag id
        to derived keys would make flag invalidation O(1).
        """
        if self._client is None:
            return 0
        deleted = 0
        batch: list[str | bytes] = []
        try:
            async for raw_key in self.client.scan_iter(
                match=self._key(pattern), count=DELETE_BATCH_SIZE
            ):
                batch.append(raw_key)
                if len(batch) >= DELETE_BATCH_SIZE:
                    deleted += await self.client.delete(*batch)
                    batch.clear()
            if batch:
                deleted += await self.client.delete(*batch)
        except RedisError as e:
            self._record_fault("delete_pattern", pattern, e)
            return deleted
        self._mark_recovered()
        return deleted

    async def is_available(self) -> bool:
        """Report health, re-probing with PING at most once per interval."""
        if self._client is None:
            return False
        if self._healthy:
            return True
        now = time.monotonic()
        if now < self._next_health_check_at:
            return False
        try:
            await cast("Awaitable[bool]", self._client.ping())
        except RedisError as e:
            self._next_health_check_at = now + self._settings.health_check_interval
            logger.debug("Redis still unavailable", extra={"error": str(e)})
            return False
        self._mark_recovered()
        return True

    # ──────────────────────────────────────────────────────────────
    # Retried primitives
    # ──────────────────────────────────────────────────────────────

    @retry(
        max_attempts=redis_settings.max_retries,
        initial_delay=redis_settings.retry_delay,
        max_delay=1.0,
        exceptions=_TRANSIENT,
        stop_after_delay=redis_settings.retry_timeout,
        operation="redis.get",
    )
    async def _get(self, key: str) -> bytes | None:
        return await self.client.get(key)

    @retry(
        max_attempts=redis_settings.max_retries,
        initial_delay=redis_settings.retry_delay,
        max_delay=1.0,
        exceptions=_TRANSIENT,
        stop_after_delay=redis_settings.retry_timeout,
        operation="redis.set",
    )
    async def _set(self, key: str, value: bytes, ttl: int) -> None:
        await self.client.set(key, value, ex=ttl)

    @retry(
        max_attempts=redis_settings.max_retries,
        initial_delay=redis_settings.retry_delay,
        max_delay=1.0,
        exceptions=_TRANSIENT,
        stop_after_delay=redis_settings.retry_timeout,
        operation="redis.delete",
    )
    async def _delete(self, key: str) -> None:
        await self.client.delete(key)

    def _mark_recovered(self) -> None:
        if not self._healthy:
            self._healthy = True
            logger.info("Redis cache available again")

    def _record_fault(self, operation: str, key: str, error: Exception) -> None:
        self._healthy = False
        self._next_health_check_at = time.monotonic() + self._settings.health_check_interval
        track_cache_error(operation, self.name)
        logger.warning(
            "Redis cache operation failed, degrading to miss/no-op",
            extra={"operation": operation, "key": key, "error": str(error)},
        )
