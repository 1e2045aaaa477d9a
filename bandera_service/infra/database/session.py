"""Async database engine and session factory for the flag store."""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from bandera_service.core.database import Base
from bandera_service.core.settings import get_db_settings
from bandera_service.core.settings.database import DatabaseSettings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database(settings: DatabaseSettings | None = None) -> async_sessionmaker[AsyncSession]:
    """Create the engine, verify connectivity and create missing tables.

    This should be called during application startup.

    Raises:
        SQLAlchemyError: If the database cannot be reached.
    """
    global _engine, _session_factory

    settings = settings or get_db_settings()
    if _session_factory is not None:
        return _session_factory

    # Table metadata must be registered before create_all
    from bandera_service.features.featureflags import models as _flag_models  # noqa: F401
    from bandera_service.features.organizations import models as _org_models  # noqa: F401

    engine_kwargs = settings.engine_kwargs()
    if settings.is_sqlite and ":memory:" in settings.database_url:
        # Every pooled connection would otherwise see its own empty database
        engine_kwargs["poolclass"] = StaticPool
    engine = create_async_engine(settings.database_url, **engine_kwargs)
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if settings.create_tables:
                await conn.run_sync(Base.metadata.create_all)
    except SQLAlchemyError as e:
        logger.error("Failed to connect to database", extra={"error": str(e)})
        await engine.dispose()
        raise

    _engine = engine
    _session_factory = build_session_factory(engine)
    logger.info(
        "Database connection established successfully",
        extra={"dialect": engine.dialect.name, "create_tables": settings.create_tables},
    )
    return _session_factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory created by init_database().

    Raises:
        RuntimeError: If the database has not been initialized.
    """
    if _session_factory is None:
        msg = "Database not initialized. Call init_database() first."
        raise RuntimeError(msg)
    return _session_factory


async def close_database() -> None:
    """Dispose the engine.

    This should be called during application shutdown.
    """
    global _engine, _session_factory

    if _engine is None:
        return
    logger.info("Closing database connection")
    await _engine.dispose()
    _engine = None
    _session_factory = None
