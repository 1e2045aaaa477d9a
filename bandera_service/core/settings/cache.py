"""Flag cache configuration settings."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Upper bound for any cache entry lifetime. Every entry must expire.
MAX_TTL_SECONDS = 86400

CacheBackendName = Literal["auto", "memory", "redis"]


class CacheSettings(BaseSettings):
    """Resolved-view cache settings.

    Environment variables use CACHE_ prefix.
    Example: CACHE_BACKEND=memory, CACHE_FLAGS_WITH_OVERRIDES_TTL=60

    Flags change less often than overrides, so the single-flag and
    aggregate list entries live longer than the flags-with-overrides
    container.
    """

    # ──────────────────────────────────────────────────────────────
    # Backend selection
    # ──────────────────────────────────────────────────────────────

    backend: CacheBackendName = Field(
        default="auto",
        description="Cache backend: auto (redis if reachable, else memory), memory, or redis",
    )

    key_prefix: str = Field(
        default="bandera:cache:",
        min_length=1,
        max_length=100,
        pattern=r"^[a-zA-Z0-9_:-]+$",
        description="Prefix applied to every key stored in a shared backend",
    )

    sweep_interval: float = Field(
        default=60.0,
        gt=0,
        le=3600,
        description="Seconds between expired-entry sweeps of the in-memory backend",
    )

    # ──────────────────────────────────────────────────────────────
    # TTLs (seconds, strictly positive and bounded)
    # ──────────────────────────────────────────────────────────────

    flag_ttl: int = Field(
        default=300,
        gt=0,
        le=MAX_TTL_SECONDS,
        description="TTL for single-flag entries",
    )

    flag_enabled_ttl: int = Field(
        default=300,
        gt=0,
        le=MAX_TTL_SECONDS,
        description="TTL for flag enabled-bit entries",
    )

    user_flags_ttl: int = Field(
        default=300,
        gt=0,
        le=MAX_TTL_SECONDS,
        description="TTL for per-user flag lists",
    )

    org_flags_ttl: int = Field(
        default=300,
        gt=0,
        le=MAX_TTL_SECONDS,
        description="TTL for per-organization flag lists",
    )

    flags_with_overrides_ttl: int = Field(
        default=120,
        gt=0,
        le=MAX_TTL_SECONDS,
        description="TTL for per-user flags-with-overrides containers",
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
