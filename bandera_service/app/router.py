"""Router registry and setup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bandera_service.core.settings import get_websocket_settings
from bandera_service.features.metrics.router import router as metrics_router

if TYPE_CHECKING:
    from fastapi import FastAPI

    from bandera_service.core.settings.websocket import WebSocketSettings

logger = logging.getLogger(__name__)


def setup_routers(
    app: FastAPI,
    websocket_settings: WebSocketSettings | None = None,
) -> None:
    """Register all feature routers with the application.

    Args:
        app: FastAPI application instance.
        websocket_settings: Optional override for realtime/WebSocket behavior.
    """
    websocket_settings = websocket_settings or get_websocket_settings()

    # Include metrics endpoint (no prefix - accessible at /metrics)
    app.include_router(metrics_router)

    # Include WebSocket realtime router if enabled
    if websocket_settings.enabled:
        from bandera_service.features.realtime.router import router as realtime_router

        app.include_router(realtime_router)
        logger.info("WebSocket realtime router included - endpoint at /ws")
