"""WebSocket connection registry and event fanout.

This module provides a connection manager that:
- Tracks live subscriber connections by connection id
- Broadcasts ``{"event": ..., "data": ...}`` envelopes to every connection
- Sends an envelope to a single connection
- Hands published events to one dispatcher task so that mutating requests
  never wait on subscribers, while events still go out in publish order

A failed or timed-out delivery to one connection is logged and never stops
delivery to the others. When the dispatch queue is full, new events are
dropped and counted rather than blocking the publisher. The manager does not evict on send failure; the transport's own
disconnect path removes dead connections.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol
from uuid import uuid4

from pydantic import BaseModel

from bandera_service.core.exceptions import NotFoundException
from bandera_service.core.settings import get_websocket_settings
from bandera_service.infra.metrics.tracking import (
    track_broadcast,
    track_event_dropped,
    track_message_sent,
    track_send_failure,
    update_connection_count,
)

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Transport handle for one subscriber. FastAPI's WebSocket satisfies it."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


class EventEnvelope(BaseModel):
    """Wire shape of every pushed event."""

    event: str
    data: dict[str, Any]


def encode_event(event: str, data: BaseModel | dict[str, Any]) -> str:
    payload = data.model_dump(mode="json") if isinstance(data, BaseModel) else data
    return EventEnvelope(event=event, data=payload).model_dump_json()


@dataclass
class ConnectionInfo:
    """Metadata about a registered connection."""

    connection_id: str
    connection: Connection
    user_id: str | None = None
    connected_at: float = field(default_factory=time.time)


class ConnectionManager:
    """Registry of live connections with broadcast and single-send.

    Registry mutation is serialized by one ``asyncio.Lock``; deliveries work
    on a snapshot so slow subscribers never hold the lock.

    Example:
        manager = ConnectionManager()
        await manager.start()

        # In WebSocket endpoint
        connection_id = await manager.connect(websocket)
        try:
            async for message in websocket.iter_text():
                ...
        finally:
            await manager.disconnect(connection_id)

        # From the flag service
        await manager.publish("feature_flag.updated", payload)
    """

    def __init__(
        self,
        max_connections: int | None = None,
        queue_size: int | None = None,
        send_timeout: float | None = None,
    ) -> None:
        settings = get_websocket_settings()
        self._max_connections = max_connections or settings.max_connections
        self._queue_size = settings.dispatch_queue_size if queue_size is None else queue_size
        self._close_timeout = settings.close_timeout
        self._send_timeout = settings.send_timeout if send_timeout is None else send_timeout

        # connection_id -> ConnectionInfo
        self._connections: dict[str, ConnectionInfo] = {}
        self._lock = asyncio.Lock()

        self._queue: asyncio.Queue[tuple[str, str]] | None = None
        self._dispatcher_task: asyncio.Task[None] | None = None

    # ──────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the dispatcher task that drains published events."""
        if self._dispatcher_task is not None:
            return
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._dispatcher_task = asyncio.create_task(
            self._dispatch_loop(self._queue), name="event-dispatch"
        )
        logger.info(
            "Connection manager started",
            extra={"max_connections": self._max_connections, "queue_size": self._queue_size},
        )

    async def stop(self) -> None:
        """Drain pending events, stop the dispatcher and close all connections."""
        if self._queue is not None and self._dispatcher_task is not None:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=self._close_timeout)
            except TimeoutError:
                logger.warning(
                    "Dropping undelivered events on shutdown",
                    extra={"pending": self._queue.qsize()},
                )
            self._dispatcher_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._dispatcher_task
        self._dispatcher_task = None
        self._queue = None

        async with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
        for info in connections:
            with contextlib.suppress(Exception):
                await info.connection.close(code=1001, reason="Server shutdown")
        update_connection_count(0)

        logger.info("Connection manager stopped", extra={"connections_closed": len(connections)})

    @property
    def is_running(self) -> bool:
        return self._dispatcher_task is not None

    # ──────────────────────────────────────────────────────────────
    # Registry
    # ──────────────────────────────────────────────────────────────

    async def add(
        self,
        connection_id: str,
        connection: Connection,
        user_id: str | None = None,
    ) -> ConnectionInfo:
        """Register an already-open connection.

        Raises:
            ConnectionRefusedError: If max connections reached.
        """
        async with self._lock:
            if connection_id not in self._connections and (
                len(self._connections) >= self._max_connections
            ):
                logger.warning(
                    "Connection refused: max connections reached",
                    extra={"max": self._max_connections},
                )
                msg = "Maximum connections reached"
                raise ConnectionRefusedError(msg)
            info = ConnectionInfo(connection_id=connection_id, connection=connection, user_id=user_id)
            self._connections[connection_id] = info
            total = len(self._connections)
        update_connection_count(total)
        logger.info(
            "Subscriber connected",
            extra={"connection_id": connection_id, "user_id": user_id, "total_connections": total},
        )
        return info

    async def remove(self, connection_id: str) -> ConnectionInfo | None:
        """Unregister a connection. Unknown ids are ignored."""
        async with self._lock:
            info = self._connections.pop(connection_id, None)
            total = len(self._connections)
        if info is None:
            return None
        update_connection_count(total)
        logger.info(
            "Subscriber disconnected",
            extra={
                "connection_id": connection_id,
                "user_id": info.user_id,
                "duration_seconds": time.time() - info.connected_at,
                "total_connections": total,
            },
        )
        return info

    async def connect(self, websocket: WebSocket, user_id: str | None = None) -> str:
        """Accept a WebSocket and register it under a fresh connection id.

        Raises:
            ConnectionRefusedError: If max connections reached. The socket is
                left open for the caller to close with a reason.
        """
        await websocket.accept()
        connection_id = str(uuid4())
        await self.add(connection_id, websocket, user_id=user_id)
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        """Unregister a connection and close its transport."""
        info = await self.remove(connection_id)
        if info is not None:
            with contextlib.suppress(Exception):
                await info.connection.close()

    def get_connection(self, connection_id: str) -> ConnectionInfo | None:
        return self._connections.get(connection_id)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # ──────────────────────────────────────────────────────────────
    # Delivery
    # ──────────────────────────────────────────────────────────────

    async def broadcast(self, event: str, data: BaseModel | dict[str, Any]) -> int:
        """Deliver an event to every registered connection.

        The envelope is serialized once. Failures on individual connections
        are logged and skipped.

        Returns:
            Number of connections the event was delivered to.
        """
        return await self._broadcast_encoded(event, encode_event(event, data))

    async def send(
        self,
        event: str,
        data: BaseModel | dict[str, Any],
        connection_id: str,
    ) -> bool:
        """Deliver an event to one connection.

        Returns:
            True if delivered, False if the transport failed.

        Raises:
            NotFoundException: If ``connection_id`` is not registered.
        """
        info = self._connections.get(connection_id)
        if info is None:
            raise NotFoundException(
                f"Connection {connection_id} is not registered",
                type="connection-not-found",
                extra={"connection_id": connection_id},
            )
        return await self._deliver(info, event, encode_event(event, data))

    async def publish(self, event: str, data: BaseModel | dict[str, Any]) -> None:
        """Hand an event off for broadcast without waiting for subscribers.

        Events are dispatched in publish order by a single task. When the
        dispatcher is not running the event is broadcast inline. When the
        queue is full the event is dropped and logged.
        """
        message = encode_event(event, data)
        if self._queue is None:
            await self._broadcast_encoded(event, message)
            return
        try:
            self._queue.put_nowait((event, message))
        except asyncio.QueueFull:
            track_event_dropped(event)
            logger.warning(
                "Dispatch queue full, dropping event",
                extra={"event": event, "queue_size": self._queue_size},
            )

    async def flush(self) -> None:
        """Wait until every published event has been dispatched."""
        if self._queue is not None:
            await self._queue.join()

    # Private methods

    async def _broadcast_encoded(self, event: str, message: str) -> int:
        async with self._lock:
            targets = list(self._connections.values())
        if not targets:
            return 0
        results = await asyncio.gather(*(self._deliver(info, event, message) for info in targets))
        delivered = sum(results)
        track_broadcast(delivered)
        logger.debug(
            "Broadcast event",
            extra={"event": event, "delivered": delivered, "failed": len(targets) - delivered},
        )
        return delivered

    async def _deliver(self, info: ConnectionInfo, event: str, message: str) -> bool:
        try:
            await asyncio.wait_for(info.connection.send_text(message), timeout=self._send_timeout)
        except TimeoutError:
            track_send_failure(event)
            logger.warning(
                "Timed out sending message to connection",
                extra={
                    "connection_id": info.connection_id,
                    "event": event,
                    "timeout": self._send_timeout,
                },
            )
            return False
        except Exception as e:
            track_send_failure(event)
            logger.warning(
                "Failed to send message to connection",
                extra={"connection_id": info.connection_id, "event": event, "error": str(e)},
            )
            return False
        track_message_sent(event)
        return True

    async def _dispatch_loop(self, queue: asyncio.Queue[tuple[str, str]]) -> None:
        while True:
            event, message = await queue.get()
            try:
                await self._broadcast_encoded(event, message)
            except Exception:
                logger.exception("Event dispatch failed", extra={"event": event})
            finally:
                queue.task_done()


# Global manager instance
_manager: ConnectionManager | None = None


def get_connection_manager() -> ConnectionManager:
    """Get the global connection manager instance.

    Raises:
        RuntimeError: If manager not initialized
    """
    if _manager is None:
        msg = "Connection manager not initialized. Call start_connection_manager() first."
        raise RuntimeError(msg)
    return _manager


async def start_connection_manager() -> ConnectionManager:
    """Initialize and start the global connection manager."""
    global _manager

    if _manager is None:
        _manager = ConnectionManager()
        await _manager.start()
    return _manager


async def stop_connection_manager() -> None:
    """Stop and cleanup the global connection manager."""
    global _manager

    if _manager is not None:
        await _manager.stop()
        _manager = None
