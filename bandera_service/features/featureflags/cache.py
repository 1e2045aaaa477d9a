"""Typed cache for resolved flag views.

Each view shape has its own key namespace, TTL and schema tag. Payloads are
stored as a JSON envelope::

    {"schema": "flag:v1", "data": {...}}

A payload whose tag does not match, or that no longer validates against the
current model, is dropped and reported as a miss.

Invalidation deliberately favours breadth: a spurious miss costs one store
round-trip, a stale hit serves the wrong flag value.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import json
import logging
from typing import Any, Generic, TypeVar
from uuid import UUID

from pydantic import TypeAdapter, ValidationError

from bandera_service.core.settings import MAX_TTL_SECONDS, get_cache_settings
from bandera_service.core.settings.cache import CacheSettings
from bandera_service.infra.cache.base import CacheBackend
from bandera_service.infra.metrics.tracking import (
    track_cache_decode_failure,
    track_cache_invalidation,
)

from .schemas import Flag, FlagsContainer

logger = logging.getLogger(__name__)

T = TypeVar("T")

FLAG_PREFIX = "flag:"
FLAG_ENABLED_PREFIX = "flag_enabled:"
USER_FLAGS_PREFIX = "user_flags:"
FLAGS_WITH_OVERRIDES_PREFIX = "flags_with_overrides:"
ORG_FLAGS_PREFIX = "org_flags:"


@dataclass(frozen=True)
class _Shape(Generic[T]):
    name: str
    version: int
    adapter: TypeAdapter[T]

    @property
    def tag(self) -> str:
        return f"{self.name}:v{self.version}"

    def encode(self, value: T) -> bytes:
        envelope = {"schema": self.tag, "data": self.adapter.dump_python(value, mode="json")}
        return json.dumps(envelope, separators=(",", ":")).encode()

    def decode(self, raw: bytes) -> T:
        """Decode an envelope.

        Raises:
            ValueError: On malformed JSON or a schema tag mismatch.
            ValidationError: When the payload no longer fits the model.
        """
        envelope = json.loads(raw)
        if not isinstance(envelope, dict) or envelope.get("schema") != self.tag:
            msg = f"expected schema {self.tag!r}"
            raise ValueError(msg)
        return self.adapter.validate_python(envelope.get("data"))


FLAG_SHAPE: _Shape[Flag] = _Shape("flag", 1, TypeAdapter(Flag))
FLAG_ENABLED_SHAPE: _Shape[bool] = _Shape("flag_enabled", 1, TypeAdapter(bool))
FLAG_LIST_SHAPE: _Shape[list[Flag]] = _Shape("flag_list", 1, TypeAdapter(list[Flag]))
FLAGS_CONTAINER_SHAPE: _Shape[FlagsContainer] = _Shape(
    "flags_with_overrides", 1, TypeAdapter(FlagsContainer)
)


def flag_key(flag_id: UUID) -> str:
    return f"{FLAG_PREFIX}{flag_id}"


def flag_enabled_key(flag_id: UUID) -> str:
    return f"{FLAG_ENABLED_PREFIX}{flag_id}"


def user_flags_key(user_id: UUID) -> str:
    return f"{USER_FLAGS_PREFIX}{user_id}"


def flags_with_overrides_key(user_id: UUID) -> str:
    return f"{FLAGS_WITH_OVERRIDES_PREFIX}{user_id}"


def org_flags_key(organization_id: UUID) -> str:
    return f"{ORG_FLAGS_PREFIX}{organization_id}"


def check_ttl(ttl: int) -> int:
    """Reject TTLs that would make an entry immortal or already expired."""
    if isinstance(ttl, bool) or not isinstance(ttl, int):
        msg = f"TTL must be an integer number of seconds, got {ttl!r}"
        raise ValueError(msg)
    if not 0 < ttl <= MAX_TTL_SECONDS:
        msg = f"TTL must be between 1 and {MAX_TTL_SECONDS} seconds, got {ttl}"
        raise ValueError(msg)
    return ttl


class FlagCacheService:
    """Read/write/invalidate resolved flag views on any cache backend.

    When the backend reports itself unavailable every read is a miss and
    every write is skipped. Invalidations are always attempted; the backend
    turns a failed delete into a logged no-op.

    Every invalidation bumps ``generation``. A reader that captures it before
    its store read and passes it to ``set_*`` never writes back a snapshot
    that an invalidation has since superseded.

    Example:
        cache = FlagCacheService(InMemoryCacheBackend())
        generation = cache.generation
        flag = await store.get_flag(flag_id)
        await cache.set_flag(flag, generation=generation)
        await cache.get_flag(flag.id)
        await cache.invalidate_flag(flag.id)
    """

    def __init__(self, backend: CacheBackend, settings: CacheSettings | None = None) -> None:
        self._backend = backend
        self._settings = settings or get_cache_settings()
        self._generation = 0

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    @property
    def generation(self) -> int:
        return self._generation

    # ──────────────────────────────────────────────────────────────
    # Single flag
    # ──────────────────────────────────────────────────────────────

    async def get_flag(self, flag_id: UUID) -> Flag | None:
        return await self._read(flag_key(flag_id), FLAG_SHAPE)

    async def set_flag(
        self, flag: Flag, ttl: int | None = None, *, generation: int | None = None
    ) -> None:
        ttl = self._settings.flag_ttl if ttl is None else ttl
        await self._write(flag_key(flag.id), FLAG_SHAPE, flag, ttl, generation)

    async def get_flag_enabled(self, flag_id: UUID) -> bool | None:
        return await self._read(flag_enabled_key(flag_id), FLAG_ENABLED_SHAPE)

    async def set_flag_enabled(
        self,
        flag_id: UUID,
        enabled: bool,
        ttl: int | None = None,
        *,
        generation: int | None = None,
    ) -> None:
        await self._write(
            flag_enabled_key(flag_id),
            FLAG_ENABLED_SHAPE,
            enabled,
            self._settings.flag_enabled_ttl if ttl is None else ttl,
            generation,
        )

    # ──────────────────────────────────────────────────────────────
    # Aggregates
    # ──────────────────────────────────────────────────────────────

    async def get_user_flags(self, user_id: UUID) -> list[Flag] | None:
        return await self._read(user_flags_key(user_id), FLAG_LIST_SHAPE)

    async def set_user_flags(
        self,
        user_id: UUID,
        flags: list[Flag],
        ttl: int | None = None,
        *,
        generation: int | None = None,
    ) -> None:
        await self._write(
            user_flags_key(user_id),
            FLAG_LIST_SHAPE,
            flags,
            self._settings.user_flags_ttl if ttl is None else ttl,
            generation,
        )

    async def get_organization_flags(self, organization_id: UUID) -> list[Flag] | None:
        return await self._read(org_flags_key(organization_id), FLAG_LIST_SHAPE)

    async def set_organization_flags(
        self,
        organization_id: UUID,
        flags: list[Flag],
        ttl: int | None = None,
        *,
        generation: int | None = None,
    ) -> None:
        await self._write(
            org_flags_key(organization_id),
            FLAG_LIST_SHAPE,
            flags,
            self._settings.org_flags_ttl if ttl is None else ttl,
            generation,
        )

    async def get_flags_with_overrides(self, user_id: UUID) -> FlagsContainer | None:
        return await self._read(flags_with_overrides_key(user_id), FLAGS_CONTAINER_SHAPE)

    async def set_flags_with_overrides(
        self,
        user_id: UUID,
        container: FlagsContainer,
        ttl: int | None = None,
        *,
        generation: int | None = None,
    ) -> None:
        await self._write(
            flags_with_overrides_key(user_id),
            FLAGS_CONTAINER_SHAPE,
            container,
            self._settings.flags_with_overrides_ttl if ttl is None else ttl,
            generation,
        )

    # ──────────────────────────────────────────────────────────────
    # Invalidation
    # ──────────────────────────────────────────────────────────────

    async def invalidate_flag(self, flag_id: UUID) -> None:
        """Drop a flag's own entries and every aggregate that may embed it."""
        self._generation += 1
        await self._backend.delete(flag_key(flag_id))
        await self._backend.delete(flag_enabled_key(flag_id))
        for prefix in (USER_FLAGS_PREFIX, ORG_FLAGS_PREFIX, FLAGS_WITH_OVERRIDES_PREFIX):
            await self._backend.delete_pattern(f"{prefix}*")
        track_cache_invalidation("flag")
        logger.debug("Invalidated flag cache", extra={"flag_id": str(flag_id)})

    async def invalidate_user(self, user_id: UUID) -> None:
        self._generation += 1
        await self._backend.delete(user_flags_key(user_id))
        await self._backend.delete(flags_with_overrides_key(user_id))
        track_cache_invalidation("user")
        logger.debug("Invalidated user cache", extra={"user_id": str(user_id)})

    async def invalidate_organization(
        self, organization_id: UUID, flag_ids: Iterable[UUID] = ()
    ) -> None:
        """Drop an organization's list and every flags-with-overrides container.

        Organization flags appear in each member's resolved view, so all
        containers go. Single-flag entries for ``flag_ids`` are dropped too.
        """
        self._generation += 1
        await self._backend.delete(org_flags_key(organization_id))
        await self._backend.delete_pattern(f"{FLAGS_WITH_OVERRIDES_PREFIX}*")
        for flag_id in flag_ids:
            await self._backend.delete(flag_key(flag_id))
            await self._backend.delete(flag_enabled_key(flag_id))
        track_cache_invalidation("organization")
        logger.debug(
            "Invalidated organization cache",
            extra={"organization_id": str(organization_id)},
        )

    # ──────────────────────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────────────────────

    async def _available(self, operation: str) -> bool:
        if await self._backend.is_available():
            return True
        logger.debug(
            "Cache backend unavailable, skipping",
            extra={"operation": operation, "backend": self._backend.name},
        )
        return False

    async def _read(self, key: str, shape: _Shape[T]) -> T | None:
        if not await self._available("get"):
            return None
        raw = await self._backend.get(key)
        if raw is None:
            return None
        try:
            return shape.decode(raw)
        except (ValueError, ValidationError) as e:
            track_cache_decode_failure(shape.name)
            logger.warning(
                "Discarding undecodable cache entry",
                extra={"key": key, "schema": shape.tag, "error": str(e)},
            )
            await self._backend.delete(key)
            return None

    async def _write(
        self,
        key: str,
        shape: _Shape[Any],
        value: Any,
        ttl: int,
        generation: int | None,
    ) -> None:
        check_ttl(ttl)
        if generation is not None and generation != self._generation:
            logger.debug("Skipping stale cache fill", extra={"key": key})
            return
        if not await self._available("set"):
            return
        await self._backend.set(key, shape.encode(value), ttl)
        if generation is not None and generation != self._generation:
            # An invalidation ran while the write was in flight
            await self._backend.delete(key)
