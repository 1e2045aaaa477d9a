"""Startup selection and lifecycle of the process-wide cache backend."""

from __future__ import annotations

import logging

from redis.exceptions import RedisError

from bandera_service.core.settings import get_cache_settings, get_redis_settings
from bandera_service.core.settings.cache import CacheSettings
from bandera_service.core.settings.redis import RedisSettings
from bandera_service.infra.metrics.tracking import track_cache_fallback

from .base import CacheBackend
from .memory import InMemoryCacheBackend
from .redis import RedisCacheBackend

logger = logging.getLogger(__name__)

_backend: CacheBackend | None = None


async def create_cache_backend(
    cache_settings: CacheSettings | None = None,
    redis_settings: RedisSettings | None = None,
) -> CacheBackend:
    """Build and start the backend named by ``CACHE_BACKEND``.

    ``auto`` uses Redis when it is configured and reachable, and otherwise
    falls back to the in-memory backend. The fallback is refused when
    ``REDIS_STARTUP_REQUIRE_CACHE`` is set.

    Raises:
        RedisError: When Redis is required (``backend="redis"`` or
            ``startup_require_cache``) and cannot be reached.
    """
    cache_settings = cache_settings or get_cache_settings()
    redis_settings = redis_settings or get_redis_settings()

    want_redis = cache_settings.backend == "redis" or (
        cache_settings.backend == "auto" and redis_settings.is_configured
    )
    if want_redis:
        backend = RedisCacheBackend(settings=redis_settings, key_prefix=cache_settings.key_prefix)
        try:
            await backend.connect()
        except (RedisError, OSError) as e:
            if cache_settings.backend == "redis" or redis_settings.startup_require_cache:
                logger.error(
                    "Redis cache required but unavailable, failing startup",
                    extra={"error": str(e), "startup_require_cache": True},
                )
                raise
            track_cache_fallback()
            logger.warning(
                "Redis cache unavailable, falling back to in-memory cache",
                extra={"error": str(e), "startup_require_cache": False},
            )
        else:
            return backend

    memory = InMemoryCacheBackend(sweep_interval=cache_settings.sweep_interval)
    await memory.start()
    return memory


async def close_cache_backend(backend: CacheBackend) -> None:
    if isinstance(backend, RedisCacheBackend):
        await backend.disconnect()
    elif isinstance(backend, InMemoryCacheBackend):
        await backend.stop()


async def start_cache() -> CacheBackend:
    """Initialize the global cache backend.

    This should be called during application startup.
    """
    global _backend
    if _backend is None:
        _backend = await create_cache_backend()
        logger.info("Cache backend started", extra={"backend": _backend.name})
    return _backend


async def stop_cache() -> None:
    """Close the global cache backend.

    This should be called during application shutdown.
    """
    global _backend
    if _backend is None:
        return
    backend, _backend = _backend, None
    await close_cache_backend(backend)
    logger.info("Cache backend stopped", extra={"backend": backend.name})


def get_cache_backend() -> CacheBackend:
    """Return the started cache backend.

    Raises:
        RuntimeError: If start_cache() has not run.
    """
    if _backend is None:
        msg = "Cache backend not initialized. Call start_cache() first."
        raise RuntimeError(msg)
    return _backend
