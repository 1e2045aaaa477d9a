"""Tests for the SQLAlchemy flag store."""

from __future__ import annotations

from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from bandera_service.core.exceptions import (
    AlreadyExistsException,
    NotFoundException,
    StoreUnavailableException,
)
from bandera_service.features.featureflags.models import AuditLogType, FlagType
from bandera_service.features.featureflags.repository import SqlAlchemyFlagStore
from bandera_service.features.featureflags.schemas import OrganizationScope, PersonalScope
from bandera_service.features.organizations.models import MemberRole


async def _create(store: SqlAlchemyFlagStore, key: str, scope, **kwargs):
    return await store.create_flag(
        key=key,
        type=kwargs.pop("type", FlagType.BOOLEAN),
        default_value=kwargs.pop("default_value", "false"),
        description=kwargs.pop("description", None),
        scope=scope,
        **kwargs,
    )


@pytest.mark.unit
class TestFlags:
    """Tests for flag rows."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, flag_store: SqlAlchemyFlagStore) -> None:
        user_id = uuid4()

        created = await _create(flag_store, "dark_mode", PersonalScope(user_id=user_id))
        fetched = await flag_store.get_flag(created.id)

        assert fetched == created
        assert fetched.owner_id == user_id
        assert fetched.organization_id is None
        assert fetched.enabled is False

    @pytest.mark.asyncio
    async def test_get_missing(self, flag_store: SqlAlchemyFlagStore) -> None:
        assert await flag_store.get_flag(uuid4()) is None

    @pytest.mark.asyncio
    async def test_key_unique_per_scope(
        self, flag_store: SqlAlchemyFlagStore, make_organization
    ) -> None:
        user_id = uuid4()
        org_id = await make_organization("Acme")
        await _create(flag_store, "beta", PersonalScope(user_id=user_id))

        with pytest.raises(AlreadyExistsException):
            await _create(flag_store, "beta", PersonalScope(user_id=user_id))

        # Same key elsewhere is fine
        await _create(flag_store, "beta", PersonalScope(user_id=uuid4()))
        await _create(flag_store, "beta", OrganizationScope(organization_id=org_id))

    @pytest.mark.asyncio
    async def test_exists_with_exclusion(self, flag_store: SqlAlchemyFlagStore) -> None:
        scope = PersonalScope(user_id=uuid4())
        flag = await _create(flag_store, "beta", scope)

        assert await flag_store.exists("beta", scope) is True
        assert await flag_store.exists("beta", scope, exclude_id=flag.id) is False
        assert await flag_store.exists("beta", PersonalScope(user_id=uuid4())) is False

    @pytest.mark.asyncio
    async def test_save_flag_updates_fields(self, flag_store: SqlAlchemyFlagStore) -> None:
        flag = await _create(flag_store, "beta", PersonalScope(user_id=uuid4()))

        saved = await flag_store.save_flag(
            flag.model_copy(update={"key": "gamma", "description": "renamed"})
        )

        assert saved.key == "gamma"
        assert (await flag_store.get_flag(flag.id)).description == "renamed"

    @pytest.mark.asyncio
    async def test_save_flag_leaves_enabled_bit(self, flag_store: SqlAlchemyFlagStore) -> None:
        flag = await _create(flag_store, "beta", PersonalScope(user_id=uuid4()))
        await flag_store.set_enabled(flag.id, True)

        saved = await flag_store.save_flag(flag.model_copy(update={"description": "stale copy"}))

        assert saved.enabled is True
        assert await flag_store.is_enabled(flag.id) is True

    @pytest.mark.asyncio
    async def test_save_missing_flag(self, flag_store: SqlAlchemyFlagStore) -> None:
        flag = await _create(flag_store, "beta", PersonalScope(user_id=uuid4()))
        await flag_store.delete_flag(flag.id)

        with pytest.raises(NotFoundException):
            await flag_store.save_flag(flag)

    @pytest.mark.asyncio
    async def test_enabled_bit(self, flag_store: SqlAlchemyFlagStore) -> None:
        flag = await _create(flag_store, "beta", PersonalScope(user_id=uuid4()))

        await flag_store.set_enabled(flag.id, True)

        assert await flag_store.is_enabled(flag.id) is True
        with pytest.raises(NotFoundException):
            await flag_store.is_enabled(uuid4())
        with pytest.raises(NotFoundException):
            await flag_store.set_enabled(uuid4(), True)

    @pytest.mark.asyncio
    async def test_delete_cascades(self, flag_store: SqlAlchemyFlagStore) -> None:
        user_id = uuid4()
        flag = await _create(flag_store, "beta", PersonalScope(user_id=user_id))
        override = await flag_store.save_override(flag.id, user_id, "true")
        await flag_store.create_audit_log(AuditLogType.CREATED, "created", flag.id, user_id)

        await flag_store.delete_flag(flag.id)

        assert await flag_store.get_flag(flag.id) is None
        assert await flag_store.find_override(override.id) is None
        assert await flag_store.get_audit_logs(flag.id) == []
        with pytest.raises(NotFoundException):
            await flag_store.delete_flag(flag.id)

    @pytest.mark.asyncio
    async def test_list_scopes(
        self, flag_store: SqlAlchemyFlagStore, make_organization
    ) -> None:
        user_id = uuid4()
        org_id = await make_organization("Acme")
        await _create(flag_store, "zeta", PersonalScope(user_id=user_id))
        await _create(flag_store, "alpha", PersonalScope(user_id=user_id))
        await _create(flag_store, "shared", OrganizationScope(organization_id=org_id))

        personal = await flag_store.list_user_flags(user_id)
        shared = await flag_store.list_organization_flags(org_id)

        assert [f.key for f in personal] == ["alpha", "zeta"]
        assert [f.key for f in shared] == ["shared"]


@pytest.mark.unit
class TestVisibleFlags:
    @pytest.mark.asyncio
    async def test_personal_and_member_org_flags_with_own_overrides(
        self, flag_store: SqlAlchemyFlagStore, make_organization
    ) -> None:
        user_id, other_id = uuid4(), uuid4()
        member_org = await make_organization("Acme", {user_id: MemberRole.MEMBER})
        foreign_org = await make_organization("Other", {other_id: MemberRole.ADMIN})
        personal = await _create(flag_store, "mine", PersonalScope(user_id=user_id))
        shared = await _create(flag_store, "shared", OrganizationScope(organization_id=member_org))
        await _create(flag_store, "foreign", OrganizationScope(organization_id=foreign_org))
        await _create(flag_store, "theirs", PersonalScope(user_id=other_id))
        await flag_store.save_override(shared.id, user_id, "true")
        await flag_store.save_override(personal.id, other_id, "ignored")

        rows = await flag_store.list_visible_flags_with_overrides(user_id)

        by_key = {flag.key: override for flag, override in rows}
        assert set(by_key) == {"mine", "shared"}
        assert by_key["mine"] is None
        assert by_key["shared"].value == "true"


@pytest.mark.unit
class TestOverrides:
    @pytest.mark.asyncio
    async def test_one_override_per_user_and_flag(self, flag_store: SqlAlchemyFlagStore) -> None:
        user_id = uuid4()
        flag = await _create(flag_store, "beta", PersonalScope(user_id=user_id))
        await flag_store.save_override(flag.id, user_id, "true")

        with pytest.raises(AlreadyExistsException):
            await flag_store.save_override(flag.id, user_id, "false")

    @pytest.mark.asyncio
    async def test_find_and_delete(self, flag_store: SqlAlchemyFlagStore) -> None:
        user_id, target = uuid4(), uuid4()
        flag = await _create(flag_store, "beta", PersonalScope(user_id=user_id))
        override = await flag_store.save_override(flag.id, target, "on")

        assert await flag_store.find_user_override(flag.id, target) == override
        assert await flag_store.get_overrides(flag.id) == [override]

        await flag_store.delete_override(override.id)

        assert await flag_store.find_override(override.id) is None
        with pytest.raises(NotFoundException) as exc_info:
            await flag_store.delete_override(override.id)
        assert exc_info.value.type == "override-not-found"


@pytest.mark.unit
class TestAuditAndMembership:
    @pytest.mark.asyncio
    async def test_audit_newest_first(self, flag_store: SqlAlchemyFlagStore) -> None:
        user_id = uuid4()
        flag = await _create(flag_store, "beta", PersonalScope(user_id=user_id))
        await flag_store.create_audit_log(AuditLogType.CREATED, "first", flag.id, user_id)
        await flag_store.create_audit_log(AuditLogType.TOGGLED, "second", flag.id, user_id)

        entries = await flag_store.get_audit_logs(flag.id)

        assert [e.message for e in entries] == ["second", "first"]
        assert entries[0].type is AuditLogType.TOGGLED

    @pytest.mark.asyncio
    async def test_roles(self, flag_store: SqlAlchemyFlagStore, make_organization) -> None:
        admin, member, outsider = uuid4(), uuid4(), uuid4()
        org_id = await make_organization(
            "Acme", {admin: MemberRole.ADMIN, member: MemberRole.MEMBER}
        )

        assert await flag_store.is_admin(admin, org_id) is True
        assert await flag_store.is_member(member, org_id) is True
        assert await flag_store.is_admin(member, org_id) is False
        assert await flag_store.is_member(outsider, org_id) is False

    @pytest.mark.asyncio
    async def test_user_email(self, flag_store: SqlAlchemyFlagStore, make_user) -> None:
        user_id = await make_user("alice@example.com")

        assert await flag_store.get_user_email(user_id) == "alice@example.com"
        assert await flag_store.get_user_email(uuid4()) is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_driver_errors_surface_as_store_unavailable() -> None:
    failing_factory = MagicMock(
        side_effect=OperationalError("SELECT 1", {}, Exception("database is locked"))
    )
    store = SqlAlchemyFlagStore(failing_factory)

    with pytest.raises(StoreUnavailableException):
        await store.get_flag(uuid4())
