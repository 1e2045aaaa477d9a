"""Feature flag dependencies for FastAPI.

Builds a ``FeatureFlagService`` from the infrastructure started by the
application lifespan.

Usage:
    @router.post("/flags/{flag_id}/toggle")
    async def toggle(
        flag_id: UUID,
        service: FeatureFlagServiceDep,
        user_id: UUID,
    ) -> Flag:
        return await service.toggle_flag(flag_id, user_id)
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from bandera_service.core.exceptions import ServiceUnavailableException
from bandera_service.infra.cache import get_cache_backend
from bandera_service.infra.database import get_session_factory
from bandera_service.infra.realtime import get_connection_manager

from .cache import FlagCacheService
from .repository import SqlAlchemyFlagStore
from .service import FeatureFlagService


def get_feature_flag_service() -> FeatureFlagService:
    """Get a feature flag service wired to the running infrastructure.

    Raises:
        ServiceUnavailableException: If the application has not finished starting.
    """
    try:
        store = SqlAlchemyFlagStore(get_session_factory())
        cache = FlagCacheService(get_cache_backend())
        publisher = get_connection_manager()
    except RuntimeError as e:
        raise ServiceUnavailableException(
            "Feature flag service is not ready",
            type="service-not-ready",
        ) from e
    return FeatureFlagService(store, cache, publisher)


FeatureFlagServiceDep = Annotated[FeatureFlagService, Depends(get_feature_flag_service)]


__all__ = [
    "FeatureFlagServiceDep",
    "get_feature_flag_service",
]
