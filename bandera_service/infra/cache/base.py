"""Cache backend contract shared by the in-memory and Redis implementations."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class CacheBackend(Protocol):
    """Key/value store with per-key expiry.

    Implementations never raise for availability faults: an unreachable
    backend answers reads with ``None`` and turns writes into no-ops.
    TTL validation is the caller's job.
    """

    name: str

    async def get(self, key: str) -> bytes | None:
        """Return the stored bytes, or None when absent, expired or unreachable."""
        ...

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        """Upsert ``value`` under ``key`` expiring after ``ttl`` seconds."""
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key``. Deleting an absent key is not an error."""
        ...

    async def delete_pattern(self, pattern: str) -> int:
        """Best-effort delete of every key matching the glob ``pattern``.

        Returns:
            Number of keys removed.
        """
        ...

    async def is_available(self) -> bool:
        """Cheap liveness check."""
        ...
