"""SQLAlchemy implementation of the flag store.

Each operation runs in its own session and transaction. Database faults are
translated into the application's exception taxonomy so that callers never
see driver exceptions.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from bandera_service.core.exceptions import (
    AlreadyExistsException,
    InternalServerException,
    NotFoundException,
    StoreUnavailableException,
)
from bandera_service.features.organizations.models import MemberRole, OrganizationMember, User

from .models import AuditLog, AuditLogType, FeatureFlag, FlagOverride, FlagType
from .schemas import (
    AuditLogEntry,
    Flag,
    FlagScope,
    OrganizationScope,
    Override,
    PersonalScope,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


def _to_flag(row: FeatureFlag) -> Flag:
    scope: FlagScope
    if row.user_id is not None and row.organization_id is None:
        scope = PersonalScope(user_id=row.user_id)
    elif row.organization_id is not None and row.user_id is None:
        scope = OrganizationScope(organization_id=row.organization_id)
    else:
        raise InternalServerException(
            "Feature flag row has an invalid owning scope",
            extra={"flag_id": str(row.id)},
        )
    return Flag(
        id=row.id,
        key=row.key,
        type=row.type,
        default_value=row.default_value,
        description=row.description,
        scope=scope,
        enabled=row.enabled,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_override(row: FlagOverride) -> Override:
    return Override(
        id=row.id,
        flag_id=row.feature_flag_id,
        user_id=row.user_id,
        value=row.value,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_audit_entry(row: AuditLog) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        type=row.type,
        message=row.message,
        flag_id=row.feature_flag_id,
        user_id=row.user_id,
        created_at=row.created_at,
    )


def _scope_filter(scope: FlagScope):
    if isinstance(scope, PersonalScope):
        return FeatureFlag.user_id == scope.user_id
    return FeatureFlag.organization_id == scope.organization_id


class SqlAlchemyFlagStore:
    """Flag store backed by an async SQLAlchemy session factory.

    Example:
        store = SqlAlchemyFlagStore(get_session_factory())
        flag = await store.get_flag(flag_id)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except IntegrityError as e:
            logger.info(
                "Flag store rejected write on uniqueness",
                extra={"operation": operation, "error": str(e.orig)},
            )
            raise AlreadyExistsException(
                "A record with the same identity already exists",
                extra={"operation": operation},
            ) from e
        except SQLAlchemyError as e:
            logger.error(
                "Flag store operation failed",
                extra={"operation": operation, "error": str(e)},
            )
            raise StoreUnavailableException(extra={"operation": operation}) from e

    # ──────────────────────────────────────────────────────────────
    # Flags
    # ──────────────────────────────────────────────────────────────

    async def get_flag(self, flag_id: UUID) -> Flag | None:
        async with self._session("get_flag") as session:
            row = await session.get(FeatureFlag, flag_id)
            return _to_flag(row) if row is not None else None

    async def create_flag(
        self,
        *,
        key: str,
        type: FlagType,
        default_value: str,
        description: str | None,
        scope: FlagScope,
        enabled: bool = False,
    ) -> Flag:
        async with self._session("create_flag") as session:
            row = FeatureFlag(
                key=key,
                type=type,
                default_value=default_value,
                description=description,
                user_id=scope.user_id if isinstance(scope, PersonalScope) else None,
                organization_id=(
                    scope.organization_id if isinstance(scope, OrganizationScope) else None
                ),
                enabled=enabled,
            )
            session.add(row)
            await session.flush()
            await session.refresh(row)
            flag = _to_flag(row)
        logger.debug("Inserted feature flag %s", flag.key, extra={"flag_id": str(flag.id)})
        return flag

    async def save_flag(self, flag: Flag) -> Flag:
        """Write key, type, default value and description.

        The enabled bit is left alone; only ``set_enabled`` changes it.
        """
        async with self._session("save_flag") as session:
            row = await session.get(FeatureFlag, flag.id)
            if row is None:
                raise NotFoundException(
                    f"Feature flag {flag.id} not found",
                    type="flag-not-found",
                    extra={"flag_id": str(flag.id)},
                )
            row.key = flag.key
            row.type = flag.type
            row.default_value = flag.default_value
            row.description = flag.description
            await session.flush()
            await session.refresh(row)
            return _to_flag(row)

    async def delete_flag(self, flag_id: UUID) -> None:
        async with self._session("delete_flag") as session:
            await session.execute(
                delete(FlagOverride).where(FlagOverride.feature_flag_id == flag_id)
            )
            await session.execute(delete(AuditLog).where(AuditLog.feature_flag_id == flag_id))
            result = await session.execute(delete(FeatureFlag).where(FeatureFlag.id == flag_id))
            if result.rowcount == 0:
                raise NotFoundException(
                    f"Feature flag {flag_id} not found",
                    type="flag-not-found",
                    extra={"flag_id": str(flag_id)},
                )

    async def exists(self, key: str, scope: FlagScope, *, exclude_id: UUID | None = None) -> bool:
        stmt = select(FeatureFlag.id).where(FeatureFlag.key == key, _scope_filter(scope))
        if exclude_id is not None:
            stmt = stmt.where(FeatureFlag.id != exclude_id)
        async with self._session("exists") as session:
            result = await session.execute(stmt.limit(1))
            return result.first() is not None

    async def list_user_flags(self, user_id: UUID) -> list[Flag]:
        stmt = select(FeatureFlag).where(FeatureFlag.user_id == user_id).order_by(FeatureFlag.key)
        async with self._session("list_user_flags") as session:
            result = await session.execute(stmt)
            return [_to_flag(row) for row in result.scalars()]

    async def list_organization_flags(self, organization_id: UUID) -> list[Flag]:
        stmt = (
            select(FeatureFlag)
            .where(FeatureFlag.organization_id == organization_id)
            .order_by(FeatureFlag.key)
        )
        async with self._session("list_organization_flags") as session:
            result = await session.execute(stmt)
            return [_to_flag(row) for row in result.scalars()]

    async def list_visible_flags_with_overrides(
        self, user_id: UUID
    ) -> list[tuple[Flag, Override | None]]:
        member_orgs = select(OrganizationMember.organization_id).where(
            OrganizationMember.user_id == user_id
        )
        stmt = (
            select(FeatureFlag, FlagOverride)
            .outerjoin(
                FlagOverride,
                and_(
                    FlagOverride.feature_flag_id == FeatureFlag.id,
                    FlagOverride.user_id == user_id,
                ),
            )
            .where(
                or_(
                    FeatureFlag.user_id == user_id,
                    FeatureFlag.organization_id.in_(member_orgs),
                )
            )
            .order_by(FeatureFlag.key)
        )
        async with self._session("list_visible_flags_with_overrides") as session:
            result = await session.execute(stmt)
            return [
                (_to_flag(flag), _to_override(override) if override is not None else None)
                for flag, override in result.tuples()
            ]

    # ──────────────────────────────────────────────────────────────
    # Enabled bit
    # ──────────────────────────────────────────────────────────────

    async def is_enabled(self, flag_id: UUID) -> bool:
        async with self._session("is_enabled") as session:
            result = await session.execute(
                select(FeatureFlag.enabled).where(FeatureFlag.id == flag_id)
            )
            enabled = result.scalar_one_or_none()
        if enabled is None:
            raise NotFoundException(
                f"Feature flag {flag_id} not found",
                type="flag-not-found",
                extra={"flag_id": str(flag_id)},
            )
        return enabled

    async def set_enabled(self, flag_id: UUID, enabled: bool) -> None:
        async with self._session("set_enabled") as session:
            result = await session.execute(
                update(FeatureFlag).where(FeatureFlag.id == flag_id).values(enabled=enabled)
            )
            if result.rowcount == 0:
                raise NotFoundException(
                    f"Feature flag {flag_id} not found",
                    type="flag-not-found",
                    extra={"flag_id": str(flag_id)},
                )

    # ──────────────────────────────────────────────────────────────
    # Overrides
    # ──────────────────────────────────────────────────────────────

    async def get_overrides(self, flag_id: UUID) -> list[Override]:
        stmt = (
            select(FlagOverride)
            .where(FlagOverride.feature_flag_id == flag_id)
            .order_by(FlagOverride.created_at)
        )
        async with self._session("get_overrides") as session:
            result = await session.execute(stmt)
            return [_to_override(row) for row in result.scalars()]

    async def find_override(self, override_id: UUID) -> Override | None:
        async with self._session("find_override") as session:
            row = await session.get(FlagOverride, override_id)
            return _to_override(row) if row is not None else None

    async def find_user_override(self, flag_id: UUID, user_id: UUID) -> Override | None:
        stmt = select(FlagOverride).where(
            FlagOverride.feature_flag_id == flag_id,
            FlagOverride.user_id == user_id,
        )
        async with self._session("find_user_override") as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            return _to_override(row) if row is not None else None

    async def save_override(self, flag_id: UUID, user_id: UUID, value: str) -> Override:
        async with self._session("save_override") as session:
            row = FlagOverride(feature_flag_id=flag_id, user_id=user_id, value=value)
            session.add(row)
            await session.flush()
            await session.refresh(row)
            return _to_override(row)

    async def delete_override(self, override_id: UUID) -> None:
        async with self._session("delete_override") as session:
            result = await session.execute(
                delete(FlagOverride).where(FlagOverride.id == override_id)
            )
            if result.rowcount == 0:
                raise NotFoundException(
                    f"Override {override_id} not found",
                    type="override-not-found",
                    extra={"override_id": str(override_id)},
                )

    # ──────────────────────────────────────────────────────────────
    # Audit
    # ──────────────────────────────────────────────────────────────

    async def create_audit_log(
        self, type: AuditLogType, message: str, flag_id: UUID, user_id: UUID
    ) -> AuditLogEntry:
        async with self._session("create_audit_log") as session:
            row = AuditLog(type=type, message=message, feature_flag_id=flag_id, user_id=user_id)
            session.add(row)
            await session.flush()
            await session.refresh(row)
            return _to_audit_entry(row)

    async def get_audit_logs(self, flag_id: UUID) -> list[AuditLogEntry]:
        stmt = (
            select(AuditLog)
            .where(AuditLog.feature_flag_id == flag_id)
            .order_by(AuditLog.created_at.desc())
        )
        async with self._session("get_audit_logs") as session:
            result = await session.execute(stmt)
            return [_to_audit_entry(row) for row in result.scalars()]

    # ──────────────────────────────────────────────────────────────
    # Membership
    # ──────────────────────────────────────────────────────────────

    async def _role(self, user_id: UUID, organization_id: UUID) -> MemberRole | None:
        stmt = select(OrganizationMember.role).where(
            OrganizationMember.user_id == user_id,
            OrganizationMember.organization_id == organization_id,
        )
        async with self._session("membership") as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def is_member(self, user_id: UUID, organization_id: UUID) -> bool:
        return await self._role(user_id, organization_id) is not None

    async def is_admin(self, user_id: UUID, organization_id: UUID) -> bool:
        return await self._role(user_id, organization_id) == MemberRole.ADMIN

    async def get_user_email(self, user_id: UUID) -> str | None:
        async with self._session("get_user_email") as session:
            result = await session.execute(select(User.email).where(User.id == user_id))
            return result.scalar_one_or_none()
