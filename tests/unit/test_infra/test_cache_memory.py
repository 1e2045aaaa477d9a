"""Tests for the in-process cache backend."""

from __future__ import annotations

import asyncio

import pytest

from bandera_service.infra.cache.memory import InMemoryCacheBackend


@pytest.mark.unit
class TestInMemoryCacheBackend:
    """Tests for expiry, pattern deletes and the sweep task."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, memory_backend: InMemoryCacheBackend) -> None:
        await memory_backend.set("flag:1", b"payload", ttl=30)

        assert await memory_backend.get("flag:1") == b"payload"
        assert await memory_backend.get("flag:2") is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss_before_any_sweep(
        self, memory_backend: InMemoryCacheBackend, clock
    ) -> None:
        await memory_backend.set("flag:1", b"payload", ttl=30)

        clock.advance(29)
        assert await memory_backend.get("flag:1") == b"payload"

        clock.advance(1)
        assert await memory_backend.get("flag:1") is None
        assert len(memory_backend) == 0

    @pytest.mark.asyncio
    async def test_set_replaces_value_and_expiry(
        self, memory_backend: InMemoryCacheBackend, clock
    ) -> None:
        await memory_backend.set("k", b"old", ttl=5)
        clock.advance(4)
        await memory_backend.set("k", b"new", ttl=5)
        clock.advance(4)

        assert await memory_backend.get("k") == b"new"

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(
        self, memory_backend: InMemoryCacheBackend, clock
    ) -> None:
        await memory_backend.set("short", b"1", ttl=10)
        await memory_backend.set("long", b"2", ttl=100)
        clock.advance(50)

        removed = await memory_backend.sweep()

        assert removed == 1
        assert len(memory_backend) == 1
        assert await memory_backend.get("long") == b"2"

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, memory_backend: InMemoryCacheBackend) -> None:
        await memory_backend.set("k", b"v", ttl=10)

        await memory_backend.delete("k")
        await memory_backend.delete("k")

        assert await memory_backend.get("k") is None

    @pytest.mark.asyncio
    async def test_delete_pattern_is_anchored(self, memory_backend: InMemoryCacheBackend) -> None:
        await memory_backend.set("user_flags:a", b"1", ttl=10)
        await memory_backend.set("user_flags:b", b"2", ttl=10)
        await memory_backend.set("xuser_flags:c", b"3", ttl=10)
        await memory_backend.set("flag:d", b"4", ttl=10)

        removed = await memory_backend.delete_pattern("user_flags:*")

        assert removed == 2
        assert await memory_backend.get("xuser_flags:c") == b"3"
        assert await memory_backend.get("flag:d") == b"4"

    @pytest.mark.asyncio
    async def test_always_available(self, memory_backend: InMemoryCacheBackend) -> None:
        assert await memory_backend.is_available() is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_background_sweep_reclaims_unread_keys() -> None:
    """Entries that are never read again are still reclaimed."""
    now = [0.0]
    backend = InMemoryCacheBackend(sweep_interval=0.01, clock=lambda: now[0])
    await backend.set("stale", b"v", ttl=1)
    now[0] = 5.0

    await backend.start()
    try:
        for _ in range(50):
            if len(backend) == 0:
                break
            await asyncio.sleep(0.01)
        assert len(backend) == 0
    finally:
        await backend.stop()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stop_clears_entries() -> None:
    backend = InMemoryCacheBackend(sweep_interval=60)
    await backend.start()
    await backend.set("k", b"v", ttl=60)

    await backend.stop()

    assert len(backend) == 0
