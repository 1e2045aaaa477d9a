"""Pydantic schemas for realtime WebSocket control messages.

Flag change events use the ``{"event": ..., "data": ...}`` envelope from
``infra.realtime``. The messages here are the connection's own control
traffic:

- Client → Server: ping, pong
- Server → Client: connected, pong, error
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class ClientMessageType(str, Enum):
    """Message types sent from client to server."""

    PING = "ping"
    PONG = "pong"


class ServerMessageType(str, Enum):
    """Message types sent from server to client."""

    CONNECTED = "connected"
    PONG = "pong"
    ERROR = "error"


class ServerMessage(BaseModel):
    """Base model for messages from server to client."""

    type: ServerMessageType


class ConnectedMessage(ServerMessage):
    """Sent immediately after connection is established."""

    type: Literal[ServerMessageType.CONNECTED] = ServerMessageType.CONNECTED
    connection_id: str = Field(..., description="Unique connection identifier")


class ServerPongMessage(ServerMessage):
    """Pong response to client ping."""

    type: Literal[ServerMessageType.PONG] = ServerMessageType.PONG


class ErrorMessage(ServerMessage):
    """Error message from server."""

    type: Literal[ServerMessageType.ERROR] = ServerMessageType.ERROR
    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] | None = Field(None, description="Additional error details")


class ConnectionStats(BaseModel):
    """Statistics about WebSocket connections."""

    total_connections: int = Field(..., ge=0)
