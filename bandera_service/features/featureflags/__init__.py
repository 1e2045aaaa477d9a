"""Feature flags core.

Provides:
- Personal and organization-scoped flags with per-user overrides
- Cached resolved views with broad, coherent invalidation
- Change events pushed to realtime subscribers

Usage:
    from bandera_service.features.featureflags import (
        FeatureFlagCreate,
        FeatureFlagServiceDep,
    )

    @router.post("/flags")
    async def create_flag(
        data: FeatureFlagCreate,
        service: FeatureFlagServiceDep,
        user_id: UUID,
    ) -> Flag:
        return await service.create_flag(data, user_id)
"""

from __future__ import annotations

from .cache import FlagCacheService
from .dependencies import FeatureFlagServiceDep, get_feature_flag_service
from .events import FeatureFlagEventType
from .models import AuditLog, AuditLogType, FeatureFlag, FlagOverride, FlagType
from .repository import SqlAlchemyFlagStore
from .schemas import (
    AuditLogEntry,
    FeatureFlagCreate,
    FeatureFlagUpdate,
    Flag,
    FlagsContainer,
    OrganizationScope,
    Override,
    PersonalScope,
    ResolvedFlag,
)
from .service import EventPublisher, FeatureFlagService, resolve_flags
from .store import FlagStore

__all__ = [
    # Models
    "AuditLog",
    # Schemas
    "AuditLogEntry",
    "AuditLogType",
    "EventPublisher",
    "FeatureFlag",
    "FeatureFlagCreate",
    "FeatureFlagEventType",
    # Service
    "FeatureFlagService",
    # Dependencies
    "FeatureFlagServiceDep",
    "FeatureFlagUpdate",
    "Flag",
    "FlagCacheService",
    "FlagOverride",
    "FlagStore",
    "FlagType",
    "FlagsContainer",
    "OrganizationScope",
    "Override",
    "PersonalScope",
    "ResolvedFlag",
    "SqlAlchemyFlagStore",
    "get_feature_flag_service",
    "resolve_flags",
]
