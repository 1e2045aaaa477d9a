"""Feature flag domain models, request schemas and resolved views."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .models import AuditLogType, FlagType


class PersonalScope(BaseModel):
    """Flag owned by a single user."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["personal"] = "personal"
    user_id: UUID = Field(description="Owning user")


class OrganizationScope(BaseModel):
    """Flag shared by every member of an organization."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["organization"] = "organization"
    organization_id: UUID = Field(description="Owning organization")


# A flag has exactly one owner; the tagged union makes "both" and "neither"
# unrepresentable.
FlagScope = Annotated[PersonalScope | OrganizationScope, Field(discriminator="kind")]


class Flag(BaseModel):
    """A persisted feature flag."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    key: str
    type: FlagType
    default_value: str
    description: str | None = None
    scope: FlagScope
    enabled: bool = False
    created_at: datetime
    updated_at: datetime

    @property
    def organization_id(self) -> UUID | None:
        return self.scope.organization_id if isinstance(self.scope, OrganizationScope) else None

    @property
    def owner_id(self) -> UUID | None:
        return self.scope.user_id if isinstance(self.scope, PersonalScope) else None

    def resolve(self, override: Override | None = None) -> ResolvedFlag:
        """Layer an optional override on top of the default value."""
        return ResolvedFlag(
            id=self.id,
            key=self.key,
            type=self.type,
            value=override.value if override is not None else self.default_value,
            is_overridden=override is not None,
            description=self.description,
            enabled=self.enabled,
        )


class Override(BaseModel):
    """A per-user value for one flag."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    flag_id: UUID
    user_id: UUID
    value: str
    created_at: datetime
    updated_at: datetime


class ResolvedFlag(BaseModel):
    """Effective value of a flag for one user."""

    id: UUID = Field(description="Flag id")
    key: str = Field(description="Flag key")
    type: FlagType = Field(description="Value type")
    value: str = Field(description="Override value if present, else the default value")
    is_overridden: bool = Field(description="Whether an override was applied")
    description: str | None = Field(default=None, description="Flag description")
    enabled: bool = Field(default=False, description="Enabled state")


class FlagsContainer(BaseModel):
    """Resolved views keyed by flag key."""

    flags: dict[str, ResolvedFlag] = Field(default_factory=dict)


class AuditLogEntry(BaseModel):
    """One audit trail entry."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    type: AuditLogType
    message: str
    flag_id: UUID
    user_id: UUID
    created_at: datetime


# ──────────────────────────────────────────────────────────────
# Requests
# ──────────────────────────────────────────────────────────────


class FeatureFlagCreate(BaseModel):
    """Schema for creating a feature flag.

    Field rules are enforced by the service so that violations surface as
    ``ValidationException`` rather than pydantic errors.
    """

    key: str = Field(description="Flag key (2-50 chars, starts with a letter)")
    type: FlagType = Field(default=FlagType.BOOLEAN, description="Value type")
    default_value: str = Field(description="String-encoded default value")
    description: str | None = Field(default=None, description="Flag description")
    organization_id: UUID | None = Field(
        default=None,
        description="Create the flag in this organization instead of the caller's personal scope",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "key": "dark_mode",
                "type": "boolean",
                "default_value": "false",
                "description": "Enable the dark theme",
            },
        },
    )


class FeatureFlagUpdate(BaseModel):
    """Schema for updating a feature flag. Omitted fields are unchanged."""

    key: str | None = Field(default=None, description="New flag key")
    type: FlagType | None = Field(default=None, description="New value type")
    default_value: str | None = Field(default=None, description="New default value")
    description: str | None = Field(default=None, description="New description")


__all__ = [
    "AuditLogEntry",
    "FeatureFlagCreate",
    "FeatureFlagUpdate",
    "Flag",
    "FlagScope",
    "FlagsContainer",
    "OrganizationScope",
    "Override",
    "PersonalScope",
    "ResolvedFlag",
]
