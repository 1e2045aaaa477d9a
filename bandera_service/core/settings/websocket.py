"""WebSocket configuration settings."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class WebSocketSettings(BaseSettings):
    """Realtime fanout and WebSocket connection settings.

    Environment variables use WS_ prefix.
    Example: WS_MAX_CONNECTIONS=5000
    """

    # ──────────────────────────────────────────────────────────────
    # Connection limits
    # ──────────────────────────────────────────────────────────────

    max_connections: int = Field(
        default=10000,
        ge=1,
        le=100000,
        description="Maximum concurrent WebSocket connections per instance",
    )

    close_timeout: float = Field(
        default=5.0,
        ge=1.0,
        le=30.0,
        description="Timeout for graceful WebSocket close handshake",
    )

    send_timeout: float = Field(
        default=5.0,
        gt=0.0,
        le=60.0,
        description="Seconds a single delivery may take before it counts as failed",
    )

    # ──────────────────────────────────────────────────────────────
    # Event dispatch
    # ──────────────────────────────────────────────────────────────

    dispatch_queue_size: int = Field(
        default=1000,
        ge=0,
        le=100000,
        description="Maximum pending events awaiting broadcast (0 = unbounded)",
    )

    # ──────────────────────────────────────────────────────────────
    # Feature flags
    # ──────────────────────────────────────────────────────────────

    enabled: bool = Field(
        default=True,
        description="Enable WebSocket endpoints",
    )

    model_config = SettingsConfigDict(
        env_prefix="WS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
