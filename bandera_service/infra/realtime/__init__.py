"""Realtime infrastructure for WebSocket fanout.

Flag mutations publish change events through the process-wide
``ConnectionManager``, which pushes them to every connected subscriber:

    FeatureFlagService ──publish──► dispatch queue ──► every connection

Usage:
    from bandera_service.infra.realtime import get_connection_manager

    manager = get_connection_manager()
    await manager.publish("feature_flag.updated", payload)
"""

from bandera_service.infra.realtime.manager import (
    Connection,
    ConnectionInfo,
    ConnectionManager,
    EventEnvelope,
    encode_event,
    get_connection_manager,
    start_connection_manager,
    stop_connection_manager,
)

__all__ = [
    "Connection",
    "ConnectionInfo",
    # Connection manager
    "ConnectionManager",
    "EventEnvelope",
    "encode_event",
    "get_connection_manager",
    "start_connection_manager",
    "stop_connection_manager",
]
