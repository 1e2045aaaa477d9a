"""Tests for the Redis cache backend and startup backend selection."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from bandera_service.core.settings import CacheSettings, RedisSettings
from bandera_service.infra.cache.factory import create_cache_backend
from bandera_service.infra.cache.memory import InMemoryCacheBackend
from bandera_service.infra.cache.redis import RedisCacheBackend


@pytest.fixture
def backend(mock_redis_client: AsyncMock) -> RedisCacheBackend:
    return RedisCacheBackend(settings=RedisSettings(), key_prefix="t:", client=mock_redis_client)


@pytest.mark.unit
class TestRedisCacheBackend:
    """Tests for prefixing, fault degradation and health probing."""

    @pytest.mark.asyncio
    async def test_set_uses_prefix_and_ttl(
        self, backend: RedisCacheBackend, mock_redis_client: AsyncMock
    ) -> None:
        await backend.set("flag:1", b"v", ttl=30)

        mock_redis_client.set.assert_awaited_once_with("t:flag:1", b"v", ex=30)
        assert await backend.get("flag:1") == b"v"

    @pytest.mark.asyncio
    async def test_transient_fault_degrades_to_miss(
        self, backend: RedisCacheBackend, mock_redis_client: AsyncMock
    ) -> None:
        mock_redis_client.get.side_effect = RedisConnectionError("connection refused")

        assert await backend.get("flag:1") is None
        # Retried once before giving up
        assert mock_redis_client.get.await_count == 2

    @pytest.mark.asyncio
    async def test_non_transient_fault_is_not_retried(
        self, backend: RedisCacheBackend, mock_redis_client: AsyncMock
    ) -> None:
        mock_redis_client.get.side_effect = ResponseError("WRONGTYPE")

        assert await backend.get("flag:1") is None
        assert mock_redis_client.get.await_count == 1

    @pytest.mark.asyncio
    async def test_fault_marks_unavailable_until_health_check(
        self, backend: RedisCacheBackend, mock_redis_client: AsyncMock
    ) -> None:
        mock_redis_client.set.side_effect = ResponseError("OOM")
        await backend.set("flag:1", b"v", ttl=30)

        assert await backend.is_available() is False
        mock_redis_client.ping.assert_not_awaited()

        # Health check interval elapsed
        backend._next_health_check_at = 0.0
        assert await backend.is_available() is True
        mock_redis_client.ping.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_health_check_stays_unavailable(
        self, backend: RedisCacheBackend, mock_redis_client: AsyncMock
    ) -> None:
        mock_redis_client.delete.side_effect = ResponseError("READONLY")
        await backend.delete("flag:1")
        mock_redis_client.ping.side_effect = RedisConnectionError("still down")
        backend._next_health_check_at = 0.0

        assert await backend.is_available() is False
        assert await backend.is_available() is False
        assert mock_redis_client.ping.await_count == 1

    @pytest.mark.asyncio
    async def test_delete_pattern_scans_within_prefix(
        self, backend: RedisCacheBackend, mock_redis_client: AsyncMock
    ) -> None:
        mock_redis_client.storage.update(
            {
                "t:user_flags:a": b"1",
                "t:user_flags:b": b"2",
                "t:flag:1": b"3",
                "other:user_flags:c": b"4",
            }
        )

        removed = await backend.delete_pattern("user_flags:*")

        assert removed == 2
        mock_redis_client.scan_iter.assert_called_once_with(match="t:user_flags:*", count=500)
        assert set(mock_redis_client.storage) == {"t:flag:1", "other:user_flags:c"}

    @pytest.mark.asyncio
    async def test_without_client_everything_is_a_noop(self) -> None:
        backend = RedisCacheBackend(settings=RedisSettings())

        assert await backend.get("k") is None
        await backend.set("k", b"v", ttl=10)
        await backend.delete("k")
        assert await backend.delete_pattern("*") == 0
        assert await backend.is_available() is False

    def test_client_property_requires_connection(self) -> None:
        with pytest.raises(RuntimeError, match="not connected"):
            _ = RedisCacheBackend(settings=RedisSettings()).client


@pytest.mark.unit
class TestCreateCacheBackend:
    """Tests for backend selection at startup."""

    @pytest.mark.asyncio
    async def test_memory_backend_when_requested(self) -> None:
        backend = await create_cache_backend(CacheSettings(backend="memory"), RedisSettings())
        try:
            assert isinstance(backend, InMemoryCacheBackend)
        finally:
            await backend.stop()

    @pytest.mark.asyncio
    async def test_auto_without_redis_config_uses_memory(self) -> None:
        redis = RedisSettings(host="localhost")
        with patch.object(RedisCacheBackend, "connect", new=AsyncMock()) as connect:
            backend = await create_cache_backend(CacheSettings(backend="auto"), redis)
        try:
            assert isinstance(backend, InMemoryCacheBackend)
            connect.assert_not_awaited()
        finally:
            await backend.stop()

    @pytest.mark.asyncio
    async def test_auto_falls_back_when_redis_unreachable(self) -> None:
        redis = RedisSettings(redis_url="redis://cache:6379/0")
        with patch.object(
            RedisCacheBackend,
            "connect",
            new=AsyncMock(side_effect=RedisConnectionError("refused")),
        ):
            backend = await create_cache_backend(CacheSettings(backend="auto"), redis)
        try:
            assert isinstance(backend, InMemoryCacheBackend)
        finally:
            await backend.stop()

    @pytest.mark.asyncio
    async def test_auto_uses_redis_when_reachable(self) -> None:
        redis = RedisSettings(redis_url="redis://cache:6379/0")
        with patch.object(RedisCacheBackend, "connect", new=AsyncMock()):
            backend = await create_cache_backend(CacheSettings(backend="auto"), redis)

        assert isinstance(backend, RedisCacheBackend)

    @pytest.mark.asyncio
    async def test_required_redis_fails_startup(self) -> None:
        redis = RedisSettings(redis_url="redis://cache:6379/0", startup_require_cache=True)
        with (
            patch.object(
                RedisCacheBackend,
                "connect",
                new=AsyncMock(side_effect=RedisConnectionError("refused")),
            ),
            pytest.raises(RedisConnectionError),
        ):
            await create_cache_backend(CacheSettings(backend="auto"), redis)

    @pytest.mark.asyncio
    async def test_explicit_redis_never_falls_back(self) -> None:
        with (
            patch.object(
                RedisCacheBackend,
                "connect",
                new=AsyncMock(side_effect=OSError("no route to host")),
            ),
            pytest.raises(OSError, match="no route"),
        ):
            await create_cache_backend(CacheSettings(backend="redis"), RedisSettings())
