"""Feature flag database models.

A flag belongs to exactly one scope: a single user (personal) or an
organization. The row stores both owner columns and a CHECK constraint
keeps exactly one of them set.
"""

from __future__ import annotations

import uuid
from enum import StrEnum

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from bandera_service.core.database.base import Base, TimestampMixin, UUIDPKMixin


def _enum_values(enum_cls: type[StrEnum]) -> list[str]:
    return [member.value for member in enum_cls]


class FlagType(StrEnum):
    """How a flag's string-encoded value is interpreted."""

    BOOLEAN = "boolean"
    STRING = "string"
    NUMBER = "number"
    JSON = "json"


class AuditLogType(StrEnum):
    """Kinds of audit entries written by flag mutations."""

    CREATED = "created"
    UPDATED = "updated"
    TOGGLED = "toggled"
    OVERRIDE_CREATED = "override_created"
    OVERRIDE_DELETED = "override_deleted"
    IMPORTED = "imported"
    EXPORTED = "exported"


class FeatureFlag(Base, UUIDPKMixin, TimestampMixin):
    """Feature flag row.

    Attributes:
        key: Flag key, unique within its owning scope.
        type: Value type (boolean, string, number, json).
        default_value: String-encoded default, interpreted per type.
        description: Optional human-readable description.
        user_id: Owner for personal flags, NULL for organization flags.
        organization_id: Owner for organization flags, NULL for personal flags.
        enabled: On/off bit, toggled independently of the default value.
    """

    __tablename__ = "feature_flags"

    key: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Flag key, unique within its scope",
    )
    type: Mapped[FlagType] = mapped_column(
        Enum(FlagType, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        comment="Value type",
    )
    default_value: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="String-encoded default value",
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Flag description",
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        nullable=True,
        comment="Owning user for personal flags",
    )
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        comment="Owning organization for organization flags",
    )
    enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Enabled state",
    )

    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (organization_id IS NULL)",
            name="single_scope",
        ),
        Index("uq_feature_flags_key_user", "key", "user_id", unique=True),
        Index("uq_feature_flags_key_organization", "key", "organization_id", unique=True),
        Index("ix_feature_flags_user_id", "user_id"),
        Index("ix_feature_flags_organization_id", "organization_id"),
    )


class FlagOverride(Base, UUIDPKMixin, TimestampMixin):
    """Per-user value that supersedes a flag's default for that user."""

    __tablename__ = "feature_flag_overrides"

    feature_flag_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("feature_flags.id", ondelete="CASCADE"),
        nullable=False,
        comment="Overridden flag",
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        nullable=False,
        comment="User the override applies to",
    )
    value: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="String-encoded override value",
    )

    __table_args__ = (
        Index("uq_feature_flag_overrides_flag_user", "feature_flag_id", "user_id", unique=True),
        Index("ix_feature_flag_overrides_user_id", "user_id"),
    )


class AuditLog(Base, UUIDPKMixin, TimestampMixin):
    """Audit trail entry for a flag mutation."""

    __tablename__ = "audit_logs"

    type: Mapped[AuditLogType] = mapped_column(
        Enum(AuditLogType, native_enum=False, length=30, values_callable=_enum_values),
        nullable=False,
        comment="Mutation kind",
    )
    message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Human-readable description",
    )
    feature_flag_id: Mapped[uuid.UUID] = mapped_column(
        nullable=False,
        comment="Flag the entry belongs to",
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        nullable=False,
        comment="Acting user",
    )

    __table_args__ = (Index("ix_audit_logs_feature_flag_id", "feature_flag_id"),)
