"""Pluggable cache backends (in-process and Redis)."""

from __future__ import annotations

from .base import CacheBackend
from .factory import (
    close_cache_backend,
    create_cache_backend,
    get_cache_backend,
    start_cache,
    stop_cache,
)
from .memory import InMemoryCacheBackend
from .redis import RedisCacheBackend

__all__ = [
    "CacheBackend",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "close_cache_backend",
    "create_cache_backend",
    "get_cache_backend",
    "start_cache",
    "stop_cache",
]
