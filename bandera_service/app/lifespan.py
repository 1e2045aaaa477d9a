"""Application lifespan management.

Services are started in dependency order and stopped in reverse.

Startup Order:
1. Core (logging, metrics) - always runs first
2. Database - the flag store's engine and session factory
3. Cache - Redis when reachable, otherwise the in-memory backend
4. WebSocket - connection manager and its event dispatcher

Shutdown Order: Reverse of startup (what starts first, shuts down last)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING

from bandera_service.core.settings import (
    get_app_settings,
    get_logging_settings,
    get_websocket_settings,
)
from bandera_service.infra.logging.config import setup_logging
from bandera_service.infra.metrics.prometheus import application_info

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)

_websocket_enabled = False


def get_websocket_enabled() -> bool:
    """Check if WebSocket was successfully started."""
    return _websocket_enabled


# =============================================================================
# Startup functions - organized by service
# =============================================================================


async def _startup_core() -> None:
    """Initialize logging and the application info metric."""
    app = get_app_settings()
    log = get_logging_settings()

    setup_logging(log_settings=log, force=True)
    logger.info(
        "Application starting",
        extra={"service": app.service_name, "environment": app.environment},
    )

    application_info.labels(
        version=app.version,
        service=app.service_name,
        environment=app.environment,
    ).set(1)


async def _startup_database() -> None:
    """Initialize database connection. The flag store cannot run without it."""
    from bandera_service.infra.database.session import init_database

    await init_database()
    logger.info("Database connection initialized")


async def _startup_cache() -> None:
    """Select and start the cache backend."""
    from bandera_service.infra.cache.factory import start_cache

    backend = await start_cache()
    logger.info("Cache initialized", extra={"backend": backend.name})


async def _startup_websocket() -> None:
    """Initialize WebSocket connection manager."""
    global _websocket_enabled

    from bandera_service.infra.realtime import start_connection_manager

    ws = get_websocket_settings()
    _websocket_enabled = False

    if not ws.enabled:
        return

    await start_connection_manager()
    _websocket_enabled = True
    logger.info("WebSocket connection manager initialized")


# =============================================================================
# Shutdown functions
# =============================================================================


async def _shutdown_websocket() -> None:
    """Stop WebSocket connection manager."""
    global _websocket_enabled

    from bandera_service.infra.realtime import stop_connection_manager

    if not _websocket_enabled:
        return

    await stop_connection_manager()
    _websocket_enabled = False
    logger.info("WebSocket connection manager stopped")


async def _shutdown_cache() -> None:
    from bandera_service.infra.cache.factory import stop_cache

    await stop_cache()


async def _shutdown_database() -> None:
    from bandera_service.infra.database.session import close_database

    await close_database()
    logger.info("Database connection closed")


async def _shutdown_core() -> None:
    """Flush queued log records."""
    from bandera_service.infra.logging.config import shutdown

    logger.info("Application shutdown complete")
    shutdown()


# =============================================================================
# Main lifespan context manager
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle.

    Args:
        app: FastAPI application instance.

    Yields:
        None during application runtime.
    """
    _ = app

    # 1. Core services (logging, metrics)
    await _startup_core()
    # 2. Database connection
    await _startup_database()
    # 3. Cache backend
    await _startup_cache()
    # 4. WebSocket
    await _startup_websocket()

    app_settings = get_app_settings()
    logger.info(
        "Application startup complete",
        extra={
            "service": app_settings.service_name,
            "environment": app_settings.environment,
            "version": app_settings.version,
            "websocket_enabled": _websocket_enabled,
        },
    )

    try:
        yield
    finally:
        logger.info("Application shutting down", extra={"service": app_settings.service_name})
        await _shutdown_websocket()
        await _shutdown_cache()
        await _shutdown_database()
        await _shutdown_core()
