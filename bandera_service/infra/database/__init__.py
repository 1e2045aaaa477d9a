"""Database engine and session lifecycle."""

from __future__ import annotations

from .session import build_session_factory, close_database, get_session_factory, init_database

__all__ = [
    "build_session_factory",
    "close_database",
    "get_session_factory",
    "init_database",
]
