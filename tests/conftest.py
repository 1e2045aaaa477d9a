"""Pytest configuration and shared fixtures.

Organization:
    - Application Fixtures: FastAPI app and HTTP client
    - Database Fixtures: in-memory SQLite engine, flag store, account seeding
    - Cache Fixtures: in-memory backend with a controllable clock, Redis mock
    - Service Fixtures: flag cache, recording publisher, flag service
"""

from __future__ import annotations

import fnmatch
import os
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from pydantic import BaseModel
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Ensure tests run without external infrastructure
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("DB_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_CONSOLE_ENABLED", "false")
os.environ.setdefault("WS_ENABLED", "true")


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
async def app():
    """Create FastAPI application for testing.

    The lifespan is not run; tests that need started services use
    ``TestClient`` as a context manager instead.
    """
    from bandera_service.app.main import create_app

    return create_app()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient]:
    """Create async HTTP client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """In-memory SQLite engine with every table created.

    StaticPool keeps a single connection so all sessions share the database.
    """
    from bandera_service.core.database import Base
    from bandera_service.features.featureflags import models as _flag_models  # noqa: F401
    from bandera_service.features.organizations import models as _org_models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    from bandera_service.infra.database.session import build_session_factory

    return build_session_factory(db_engine)


@pytest.fixture
def flag_store(session_factory):
    """Flag store on the in-memory database."""
    from bandera_service.features.featureflags.repository import SqlAlchemyFlagStore

    return SqlAlchemyFlagStore(session_factory)


@pytest.fixture
def make_user(session_factory):
    """Factory that inserts a user and returns its id.

    Example:
        async def test_something(make_user):
            user_id = await make_user("alice@example.com")
    """
    from bandera_service.features.organizations.models import User

    async def _make_user(email: str) -> UUID:
        async with session_factory() as session, session.begin():
            user = User(email=email)
            session.add(user)
            await session.flush()
            return user.id

    return _make_user


@pytest.fixture
def make_organization(session_factory):
    """Factory that inserts an organization with members and returns its id.

    ``members`` maps user ids to ``MemberRole`` values.
    """
    from bandera_service.features.organizations.models import Organization, OrganizationMember

    async def _make_organization(name: str, members: dict[UUID, Any] | None = None) -> UUID:
        async with session_factory() as session, session.begin():
            org = Organization(name=name)
            session.add(org)
            await session.flush()
            for user_id, role in (members or {}).items():
                session.add(OrganizationMember(organization_id=org.id, user_id=user_id, role=role))
            return org.id

    return _make_organization


# ============================================================================
# Cache Fixtures
# ============================================================================


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def memory_backend(clock: FakeClock):
    """In-memory backend driven by ``clock``. The sweep task is not started."""
    from bandera_service.infra.cache.memory import InMemoryCacheBackend

    backend = InMemoryCacheBackend(sweep_interval=3600, clock=clock)
    yield backend
    await backend.stop()


@pytest.fixture
def mock_redis_client() -> AsyncMock:
    """Redis client mock backed by a dict.

    Supports get/set/delete/scan_iter/ping, which is everything the cache
    backend uses.
    """
    client = AsyncMock()
    storage: dict[str, bytes] = {}

    async def mock_get(key: str) -> bytes | None:
        return storage.get(key)

    async def mock_set(key: str, value: bytes, ex: int | None = None) -> bool:
        storage[key] = value
        return True

    async def mock_delete(*keys: str) -> int:
        removed = 0
        for key in keys:
            if storage.pop(key, None) is not None:
                removed += 1
        return removed

    async def mock_scan_iter(match: str | None = None, count: int | None = None):
        for key in list(storage):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    client.get = AsyncMock(side_effect=mock_get)
    client.set = AsyncMock(side_effect=mock_set)
    client.delete = AsyncMock(side_effect=mock_delete)
    client.scan_iter = MagicMock(side_effect=mock_scan_iter)
    client.ping = AsyncMock(return_value=True)
    client.storage = storage
    return client


# ============================================================================
# Service Fixtures
# ============================================================================


class RecordingPublisher:
    """Event publisher that keeps every published event in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, BaseModel]] = []

    async def publish(self, event: str, data: BaseModel) -> None:
        self.events.append((event, data))

    @property
    def names(self) -> list[str]:
        return [event for event, _ in self.events]


@pytest.fixture
def cache_settings():
    from bandera_service.core.settings.cache import CacheSettings

    return CacheSettings(backend="memory")


@pytest.fixture
def flag_cache(memory_backend, cache_settings):
    from bandera_service.features.featureflags.cache import FlagCacheService

    return FlagCacheService(memory_backend, cache_settings)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def flag_service(flag_store, flag_cache, publisher):
    """Flag service wired to the in-memory store, cache and a recording publisher."""
    from bandera_service.features.featureflags.service import FeatureFlagService

    return FeatureFlagService(flag_store, flag_cache, publisher)
