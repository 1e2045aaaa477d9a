"""WebSocket router for realtime flag change notifications.

Endpoints:
- GET /ws: WebSocket subscription endpoint
- GET /ws/stats: Connection statistics
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse

from bandera_service.core.settings import get_websocket_settings
from bandera_service.features.realtime.schemas import (
    ClientMessageType,
    ConnectedMessage,
    ConnectionStats,
    ErrorMessage,
    ServerPongMessage,
)
from bandera_service.infra.logging import remove_from_log_context, set_log_context
from bandera_service.infra.realtime import get_connection_manager

if TYPE_CHECKING:
    from bandera_service.infra.realtime.manager import ConnectionManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/ws", tags=["realtime"])

ws_settings = get_websocket_settings()


def _get_manager_safe() -> ConnectionManager | None:
    """Get connection manager, handling not-initialized case."""
    try:
        return get_connection_manager()
    except RuntimeError:
        return None


@router.websocket("")
async def websocket_endpoint(
    websocket: WebSocket,
    user_id: Annotated[str | None, Query(description="User identifier")] = None,
) -> None:
    """Subscribe to feature flag change events.

    Every flag mutation is pushed to all subscribers as
    ``{"event": "feature_flag.<action>", "data": {...}}``.

    Message Protocol:
        Client → Server:
        - {"type": "ping"}
        - {"type": "pong"}

        Server → Client:
        - {"type": "connected", "connection_id": "..."}
        - {"type": "pong"}
        - {"type": "error", "code": "...", "message": "..."}
        - {"event": "...", "data": {...}}
    """
    if not ws_settings.enabled:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="WebSocket disabled")
        return

    manager = _get_manager_safe()
    if manager is None:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="Server not ready")
        return

    connection_id: str | None = None
    try:
        connection_id = await manager.connect(websocket, user_id=user_id)
        set_log_context(connection_id=connection_id, user_id=user_id)
        await websocket.send_json(ConnectedMessage(connection_id=connection_id).model_dump())
        await _handle_messages(websocket)

    except ConnectionRefusedError as e:
        logger.warning("WebSocket connection refused", extra={"reason": str(e)})
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason=str(e))

    except WebSocketDisconnect:
        logger.debug("WebSocket client disconnected normally")

    except Exception as e:
        logger.exception("WebSocket error", extra={"error": str(e)})

    finally:
        if connection_id is not None:
            await manager.remove(connection_id)
            remove_from_log_context("connection_id", "user_id")


async def _handle_messages(websocket: WebSocket) -> None:
    """Answer control messages until the client goes away."""
    async for raw_message in websocket.iter_text():
        try:
            message = json.loads(raw_message)
        except json.JSONDecodeError:
            error = ErrorMessage(code="invalid_json", message="Invalid JSON message")
            await websocket.send_json(error.model_dump())
            continue

        msg_type = message.get("type") if isinstance(message, dict) else None
        if msg_type == ClientMessageType.PING:
            await websocket.send_json(ServerPongMessage().model_dump())
        elif msg_type == ClientMessageType.PONG:
            continue
        else:
            error = ErrorMessage(
                code="unknown_type",
                message=f"Unknown message type: {msg_type}",
            )
            await websocket.send_json(error.model_dump())


@router.get(
    "/stats",
    response_model=ConnectionStats,
    summary="Get WebSocket connection statistics",
)
async def get_stats() -> ConnectionStats | JSONResponse:
    """Get current WebSocket connection statistics."""
    manager = _get_manager_safe()
    if manager is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "WebSocket manager not initialized"},
        )
    return ConnectionStats(total_connections=manager.connection_count)
