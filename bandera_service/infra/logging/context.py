"""Context management for structured logging.

Context set with :func:`set_log_context` is stored in a ContextVar, so each
asyncio task (one per request or WebSocket connection) sees only its own
fields. :class:`ContextInjectingFilter` copies those fields onto every
LogRecord for the formatters.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Add fields to the logging context of the current task.

    Example:
        set_log_context(user_id=str(user_id), flag_id=str(flag_id))
        logger.info("Toggling flag")  # includes user_id and flag_id
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    return _log_context.get().copy()


def remove_from_log_context(*keys: str) -> None:
    current = _log_context.get().copy()
    for key in keys:
        current.pop(key, None)
    _log_context.set(current)


class ContextInjectingFilter(logging.Filter):
    """Logging filter that injects the contextvars log context into records.

    Existing record attributes (including ``extra=`` fields passed at the
    call site) are never overwritten.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True
