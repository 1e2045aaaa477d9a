"""Organization membership models.

Users and organizations are owned by the account layer. The flag core only
reads membership and roles through the flag store.
"""

from __future__ import annotations

import uuid
from enum import StrEnum

from sqlalchemy import Enum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from bandera_service.core.database.base import Base, TimestampMixin, UUIDPKMixin


class MemberRole(StrEnum):
    """Role of a user inside an organization."""

    ADMIN = "admin"
    MEMBER = "member"


class User(Base, UUIDPKMixin, TimestampMixin):
    """Account record, used for audit messages that name a user."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        comment="Login email address",
    )


class Organization(Base, UUIDPKMixin, TimestampMixin):
    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Display name",
    )


class OrganizationMember(Base, UUIDPKMixin, TimestampMixin):
    """Membership of a user in an organization with a role."""

    __tablename__ = "organization_members"

    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        comment="Organization the user belongs to",
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        nullable=False,
        comment="Member user id",
    )
    role: Mapped[MemberRole] = mapped_column(
        Enum(MemberRole, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=MemberRole.MEMBER,
        comment="Role inside the organization",
    )

    __table_args__ = (
        Index(
            "uq_organization_members_org_user",
            "organization_id",
            "user_id",
            unique=True,
        ),
        Index("ix_organization_members_user_id", "user_id"),
    )
