"""In-process cache backend.

A single ``asyncio.Lock`` serializes access to the entry map. Expiry is
checked lazily on every read and a background task sweeps expired entries
on a fixed interval, so memory is reclaimed even for keys that are never
read again.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
import fnmatch
import logging
import re
import time
from typing import TYPE_CHECKING

from bandera_service.infra.metrics.tracking import (
    track_cache_expired,
    track_cache_lookup,
    track_cache_operation,
)

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Entry:
    value: bytes
    expires_at: float


class InMemoryCacheBackend:
    """Lock-protected dict with absolute expiry per entry.

    Example:
        backend = InMemoryCacheBackend(sweep_interval=60)
        await backend.start()
        await backend.set("flag:123", b"...", ttl=300)
        await backend.get("flag:123")
        await backend.stop()

    Args:
        sweep_interval: Seconds between background sweeps.
        clock: Monotonic clock, injectable for tests.
    """

    name = "memory"

    def __init__(
        self,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._sweep_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._sweep_task is not None:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="cache-sweep")
        logger.info(
            "In-memory cache started",
            extra={"sweep_interval": self._sweep_interval},
        )

    async def stop(self) -> None:
        """Stop the sweep task and drop every entry."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
        async with self._lock:
            self._entries.clear()
        logger.info("In-memory cache stopped")

    async def get(self, key: str) -> bytes | None:
        start = time.perf_counter()
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at <= self._clock():
                del self._entries[key]
                track_cache_expired("lazy")
                entry = None
        track_cache_lookup(self.name, hit=entry is not None)
        track_cache_operation("get", self.name, time.perf_counter() - start)
        return entry.value if entry is not None else None

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        async with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching a glob, using an anchored regex over the key set."""
        regex = re.compile(fnmatch.translate(pattern))
        async with self._lock:
            doomed = [key for key in self._entries if regex.fullmatch(key)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    async def is_available(self) -> bool:
        return True

    async def sweep(self) -> int:
        """Remove every expired entry now.

        Returns:
            Number of entries removed.
        """
        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
        track_cache_expired("sweep", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            removed = await self.sweep()
            if removed:
                logger.debug("Swept expired cache entries", extra={"removed": removed})
