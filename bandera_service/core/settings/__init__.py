"""Modular Pydantic Settings v2 configuration.

Each domain (app, cache, db, redis, websocket, logging) has its own
frozen settings model with a dedicated environment prefix. Import
settings via the cached loaders:

    from bandera_service.core.settings import get_cache_settings

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. Environment variables
    3. .env file (development only)
"""

from __future__ import annotations

from .app import AppSettings
from .cache import MAX_TTL_SECONDS, CacheSettings
from .database import DatabaseSettings
from .loader import (
    clear_all_caches,
    get_app_settings,
    get_cache_settings,
    get_db_settings,
    get_logging_settings,
    get_redis_settings,
    get_websocket_settings,
)
from .logs import LoggingSettings
from .redis import RedisSettings
from .websocket import WebSocketSettings

__all__ = [
    "MAX_TTL_SECONDS",
    "AppSettings",
    "CacheSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "RedisSettings",
    "WebSocketSettings",
    "clear_all_caches",
    "get_app_settings",
    "get_cache_settings",
    "get_db_settings",
    "get_logging_settings",
    "get_redis_settings",
    "get_websocket_settings",
]
