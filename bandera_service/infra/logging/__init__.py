"""Structured logging: JSONL formatting, context injection and setup."""

from __future__ import annotations

from bandera_service.infra.logging.config import configure_logging, setup_logging, shutdown
from bandera_service.infra.logging.context import (
    ContextInjectingFilter,
    get_log_context,
    remove_from_log_context,
    set_log_context,
)
from bandera_service.infra.logging.formatters import JSONFormatter

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "configure_logging",
    "get_log_context",
    "remove_from_log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
