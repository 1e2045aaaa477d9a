"""Change events broadcast to realtime subscribers after flag mutations."""

from __future__ import annotations

from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, Field

from .schemas import ResolvedFlag


class FeatureFlagEventType(StrEnum):
    """Event names on the wire."""

    CREATED = "feature_flag.created"
    UPDATED = "feature_flag.updated"
    DELETED = "feature_flag.deleted"
    OVERRIDE_CREATED = "feature_flag.override.created"
    OVERRIDE_UPDATED = "feature_flag.override.updated"
    OVERRIDE_DELETED = "feature_flag.override.deleted"


class FlagChangedPayload(BaseModel):
    """Payload of created/updated events: the full flag representation."""

    flag: ResolvedFlag
    user_id: UUID = Field(description="Acting user")


class FlagDeletedPayload(BaseModel):
    """Payload of deleted events. The flag body no longer exists."""

    flag_id: UUID
    user_id: UUID = Field(description="Acting user")


class OverrideChangedPayload(BaseModel):
    """Payload of override events."""

    flag_id: UUID
    override_id: UUID
    target_user_id: UUID = Field(description="User the override applies to")
    value: str | None = Field(default=None, description="New value, None on delete")
    user_id: UUID = Field(description="Acting user")
