"""Feature flag resolution service.

Sits between the controller layer and the flag store. Reads go through the
flag cache; every mutation follows the same order:

1. write to the store
2. invalidate the affected cache entries
3. hand a change event to the publisher

so that state visible to the caller is correct when the call returns, while
subscribers may trail slightly behind.

Invalidation runs even when a later store step fails, and read-through
fills carry the cache generation captured before their store read so a
fill that raced a mutation is dropped instead of cached.
"""

from __future__ import annotations

from collections.abc import Iterable
import logging
from typing import TYPE_CHECKING, Any, Protocol
from uuid import UUID

from bandera_service.core.exceptions import (
    AccessDeniedException,
    AlreadyExistsException,
    NotFoundException,
    StoreUnavailableException,
    ValidationException,
)
from bandera_service.infra.metrics.tracking import track_flag_mutation

from .events import (
    FeatureFlagEventType,
    FlagChangedPayload,
    FlagDeletedPayload,
    OverrideChangedPayload,
)
from .models import AuditLogType
from .schemas import (
    AuditLogEntry,
    FeatureFlagCreate,
    FeatureFlagUpdate,
    Flag,
    FlagScope,
    FlagsContainer,
    OrganizationScope,
    Override,
    PersonalScope,
)
from .validators import validate_default_value, validate_flag_key, validate_override_value

if TYPE_CHECKING:
    from pydantic import BaseModel

    from .cache import FlagCacheService
    from .store import FlagStore

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
    """Fire-and-forget sink for change events. ``ConnectionManager`` is one."""

    async def publish(self, event: str, data: BaseModel) -> None: ...


def resolve_flags(rows: Iterable[tuple[Flag, Override | None]]) -> FlagsContainer:
    """Layer overrides onto flags and key the result by flag key.

    Organization flags are applied first so that a personal flag with the
    same key wins for its owner.
    """
    ordered = sorted(rows, key=lambda row: isinstance(row[0].scope, PersonalScope))
    return FlagsContainer(flags={flag.key: flag.resolve(override) for flag, override in ordered})


class FeatureFlagService:
    """Flag CRUD, overrides and resolved views for one acting user at a time.

    Access rules:
    - a personal flag is visible only to its owner
    - an organization flag is visible to every member of the organization
    - overrides for other users need ownership (personal flags) or the
      admin role (organization flags)

    Example:
        service = FeatureFlagService(store, cache, manager)

        flag = await service.create_flag(
            FeatureFlagCreate(key="dark_mode", default_value="false"),
            user_id,
        )
        await service.toggle_flag(flag.id, user_id)
        assert await service.is_enabled(flag.id, user_id)
    """

    def __init__(
        self,
        store: FlagStore,
        cache: FlagCacheService,
        publisher: EventPublisher,
    ) -> None:
        self._store = store
        self._cache = cache
        self._publisher = publisher

    # ──────────────────────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────────────────────

    async def get_flag(self, flag_id: UUID, user_id: UUID) -> Flag:
        """Get a flag the user can see.

        A cache hit is only returned after the requester's access to the
        cached scope has been re-verified; otherwise the store decides.

        Raises:
            NotFoundException: If the flag does not exist.
            AccessDeniedException: If the user cannot see the flag.
        """
        cached = await self._cache.get_flag(flag_id)
        if cached is not None and await self._has_access(cached, user_id):
            return cached

        generation = self._cache.generation
        flag = await self._require_flag(flag_id, user_id)
        await self._cache.set_flag(flag, generation=generation)
        return flag

    async def get_all_flags(self, user_id: UUID) -> list[Flag]:
        """Personal flags owned by the user."""
        cached = await self._cache.get_user_flags(user_id)
        if cached is not None:
            return cached
        generation = self._cache.generation
        flags = await self._store.list_user_flags(user_id)
        await self._cache.set_user_flags(user_id, flags, generation=generation)
        return flags

    async def get_organization_flags(self, organization_id: UUID, user_id: UUID) -> list[Flag]:
        """Flags of an organization. Membership is checked before the cache."""
        if not await self._store.is_member(user_id, organization_id):
            raise AccessDeniedException(
                "You are not a member of this organization",
                extra={"organization_id": str(organization_id)},
            )
        cached = await self._cache.get_organization_flags(organization_id)
        if cached is not None:
            return cached
        generation = self._cache.generation
        flags = await self._store.list_organization_flags(organization_id)
        await self._cache.set_organization_flags(organization_id, flags, generation=generation)
        return flags

    async def get_flags_with_overrides(self, user_id: UUID) -> FlagsContainer:
        """Every flag visible to the user, resolved against the user's overrides."""
        cached = await self._cache.get_flags_with_overrides(user_id)
        if cached is not None:
            return cached
        generation = self._cache.generation
        rows = await self._store.list_visible_flags_with_overrides(user_id)
        container = resolve_flags(rows)
        await self._cache.set_flags_with_overrides(user_id, container, generation=generation)
        return container

    async def is_enabled(self, flag_id: UUID, user_id: UUID) -> bool:
        await self.get_flag(flag_id, user_id)
        cached = await self._cache.get_flag_enabled(flag_id)
        if cached is not None:
            return cached
        generation = self._cache.generation
        enabled = await self._store.is_enabled(flag_id)
        await self._cache.set_flag_enabled(flag_id, enabled, generation=generation)
        return enabled

    async def get_overrides(self, flag_id: UUID, user_id: UUID) -> list[Override]:
        flag = await self._require_flag(flag_id, user_id)
        return await self._store.get_overrides(flag.id)

    async def get_audit_logs(self, flag_id: UUID, user_id: UUID) -> list[AuditLogEntry]:
        """Audit trail of a flag, newest first."""
        flag = await self._require_flag(flag_id, user_id)
        return await self._store.get_audit_logs(flag.id)

    # ──────────────────────────────────────────────────────────────
    # Flag mutations
    # ──────────────────────────────────────────────────────────────

    async def create_flag(self, data: FeatureFlagCreate, user_id: UUID) -> Flag:
        """Create a flag in the caller's personal scope or in an organization.

        New flags start disabled.

        Raises:
            ValidationException: If the key or default value is malformed.
            AccessDeniedException: If the caller is not a member of the organization.
            AlreadyExistsException: If the key is taken in the target scope.
        """
        key = validate_flag_key(data.key)
        validate_default_value(data.default_value, data.type)

        scope: FlagScope
        if data.organization_id is not None:
            if not await self._store.is_member(user_id, data.organization_id):
                raise AccessDeniedException(
                    "You are not a member of this organization",
                    extra={"organization_id": str(data.organization_id)},
                )
            scope = OrganizationScope(organization_id=data.organization_id)
        else:
            scope = PersonalScope(user_id=user_id)

        await self._ensure_key_free(key, scope)
        flag = await self._store.create_flag(
            key=key,
            type=data.type,
            default_value=data.default_value,
            description=data.description,
            scope=scope,
            enabled=False,
        )
        try:
            await self._store.create_audit_log(
                AuditLogType.CREATED, f"Created flag '{flag.key}'", flag.id, user_id
            )
        finally:
            await self._invalidate_scope(flag.scope, [flag.id])

        track_flag_mutation("create")
        logger.info(
            "Created feature flag: %s",
            flag.key,
            extra={"flag_id": str(flag.id), "user_id": str(user_id), "scope": scope.kind},
        )
        await self._publish(
            FeatureFlagEventType.CREATED,
            FlagChangedPayload(flag=flag.resolve(), user_id=user_id),
        )
        return flag

    async def update_flag(self, flag_id: UUID, data: FeatureFlagUpdate, user_id: UUID) -> Flag:
        """Apply the fields set on ``data``.

        Raises:
            NotFoundException: If the flag does not exist.
            AccessDeniedException: If the user cannot see the flag.
            ValidationException: If a new key or default value is malformed.
            AlreadyExistsException: If a rename collides within the scope.
        """
        flag = await self._require_flag(flag_id, user_id)

        changes: dict[str, Any] = {
            name: value
            for name, value in data.model_dump(exclude_unset=True).items()
            if value is not None or name == "description"
        }
        if "key" in changes:
            changes["key"] = validate_flag_key(changes["key"])
            if changes["key"] != flag.key:
                await self._ensure_key_free(changes["key"], flag.scope, exclude_id=flag.id)
        if "type" in changes or "default_value" in changes:
            validate_default_value(
                changes.get("default_value", flag.default_value),
                changes.get("type", flag.type),
            )

        try:
            updated = await self._store.save_flag(flag.model_copy(update=changes))
            await self._store.create_audit_log(
                AuditLogType.UPDATED,
                f"Updated flag '{updated.key}' ({', '.join(sorted(changes)) or 'no changes'})",
                updated.id,
                user_id,
            )
        finally:
            await self._cache.invalidate_flag(flag.id)

        track_flag_mutation("update")
        logger.info(
            "Updated feature flag: %s",
            updated.key,
            extra={"flag_id": str(updated.id), "fields": sorted(changes)},
        )
        await self._publish(
            FeatureFlagEventType.UPDATED,
            FlagChangedPayload(flag=updated.resolve(), user_id=user_id),
        )
        return updated

    async def toggle_flag(self, flag_id: UUID, user_id: UUID) -> Flag:
        """Flip the enabled bit. The default value is left alone."""
        flag = await self._require_flag(flag_id, user_id)
        was_enabled = await self._store.is_enabled(flag.id)
        try:
            await self._store.set_enabled(flag.id, not was_enabled)
            await self._store.create_audit_log(
                AuditLogType.TOGGLED,
                f"Toggled flag '{flag.key}' from {_state(was_enabled)} to {_state(not was_enabled)}",
                flag.id,
                user_id,
            )
        finally:
            await self._cache.invalidate_flag(flag.id)
        toggled = flag.model_copy(update={"enabled": not was_enabled})

        track_flag_mutation("toggle")
        logger.info(
            "Toggled feature flag: %s",
            flag.key,
            extra={"flag_id": str(flag.id), "enabled": toggled.enabled},
        )
        await self._publish(
            FeatureFlagEventType.UPDATED,
            FlagChangedPayload(flag=toggled.resolve(), user_id=user_id),
        )
        return toggled

    async def delete_flag(self, flag_id: UUID, user_id: UUID) -> None:
        """Delete a flag with its overrides and audit trail."""
        flag = await self._require_flag(flag_id, user_id)
        try:
            await self._store.delete_flag(flag.id)
        finally:
            await self._cache.invalidate_flag(flag.id)
            await self._invalidate_scope(flag.scope, [flag.id])

        track_flag_mutation("delete")
        logger.info("Deleted feature flag: %s", flag.key, extra={"flag_id": str(flag.id)})
        await self._publish(
            FeatureFlagEventType.DELETED,
            FlagDeletedPayload(flag_id=flag.id, user_id=user_id),
        )

    # ──────────────────────────────────────────────────────────────
    # Overrides
    # ──────────────────────────────────────────────────────────────

    async def create_override(
        self,
        flag_id: UUID,
        target_user_id: UUID,
        value: str,
        user_id: UUID,
    ) -> Override:
        """Set ``target_user_id``'s value for a flag, replacing any previous one.

        Emits ``override.updated`` when an existing override was replaced and
        ``override.created`` otherwise.
        """
        flag = await self._require_flag(flag_id, user_id)
        if target_user_id != user_id:
            await self._require_manage(flag, user_id)
        value = validate_override_value(value)

        existing = await self._store.find_user_override(flag.id, target_user_id)
        try:
            if existing is not None:
                try:
                    await self._store.delete_override(existing.id)
                except NotFoundException:
                    logger.debug(
                        "Superseded override already removed",
                        extra={"override_id": str(existing.id)},
                    )
            override = await self._store.save_override(flag.id, target_user_id, value)

            target = await self._describe_user(target_user_id)
            await self._store.create_audit_log(
                AuditLogType.OVERRIDE_CREATED,
                f"Set override for {target} on flag '{flag.key}' to '{value}'",
                flag.id,
                user_id,
            )
        finally:
            await self._cache.invalidate_flag(flag.id)

        track_flag_mutation("override_create")
        logger.info(
            "Created override for flag: %s",
            flag.key,
            extra={
                "flag_id": str(flag.id),
                "target_user_id": str(target_user_id),
                "replaced": existing is not None,
            },
        )
        event = (
            FeatureFlagEventType.OVERRIDE_UPDATED
            if existing is not None
            else FeatureFlagEventType.OVERRIDE_CREATED
        )
        await self._publish(
            event,
            OverrideChangedPayload(
                flag_id=flag.id,
                override_id=override.id,
                target_user_id=target_user_id,
                value=override.value,
                user_id=user_id,
            ),
        )
        return override

    async def delete_override(self, override_id: UUID, user_id: UUID) -> None:
        override = await self._store.find_override(override_id)
        if override is None:
            raise NotFoundException(
                f"Override {override_id} not found",
                type="override-not-found",
                extra={"override_id": str(override_id)},
            )
        flag = await self._require_flag(override.flag_id, user_id)
        if override.user_id != user_id:
            await self._require_manage(flag, user_id)

        try:
            await self._store.delete_override(override.id)
            target = await self._describe_user(override.user_id)
            await self._store.create_audit_log(
                AuditLogType.OVERRIDE_DELETED,
                f"Removed override for {target} on flag '{flag.key}'",
                flag.id,
                user_id,
            )
        finally:
            await self._cache.invalidate_flag(flag.id)
        track_flag_mutation("override_delete")

        if await self._store.get_flag(flag.id) is None:
            logger.debug(
                "Flag removed before override deletion was broadcast",
                extra={"flag_id": str(flag.id), "override_id": str(override.id)},
            )
            return
        await self._publish(
            FeatureFlagEventType.OVERRIDE_DELETED,
            OverrideChangedPayload(
                flag_id=flag.id,
                override_id=override.id,
                target_user_id=override.user_id,
                user_id=user_id,
            ),
        )

    # ──────────────────────────────────────────────────────────────
    # Scope moves
    # ──────────────────────────────────────────────────────────────

    async def import_flag_to_organization(
        self, flag_id: UUID, organization_id: UUID, user_id: UUID
    ) -> Flag:
        """Move a personal flag into an organization the user administers.

        The flag is recreated under a new id and the original is deleted, so
        nothing keyed by the old id ever sees a different scope.
        """
        flag = await self._get_existing(flag_id)
        if not isinstance(flag.scope, PersonalScope):
            raise ValidationException(
                "Only personal flags can be imported into an organization",
                extra={"flag_id": str(flag_id)},
            )
        if flag.scope.user_id != user_id:
            raise AccessDeniedException(extra={"flag_id": str(flag_id)})
        if not await self._store.is_admin(user_id, organization_id):
            raise AccessDeniedException(
                "Only organization admins can import flags",
                extra={"organization_id": str(organization_id)},
            )

        moved = await self._move(
            flag,
            OrganizationScope(organization_id=organization_id),
            AuditLogType.IMPORTED,
            f"Imported flag '{flag.key}' from personal scope",
            user_id,
        )
        track_flag_mutation("import")
        return moved

    async def export_flag_to_personal(self, flag_id: UUID, user_id: UUID) -> Flag:
        """Copy an organization flag into the user's personal scope and remove it."""
        flag = await self._get_existing(flag_id)
        if not isinstance(flag.scope, OrganizationScope):
            raise ValidationException(
                "Only organization flags can be exported to personal scope",
                extra={"flag_id": str(flag_id)},
            )
        if not await self._store.is_member(user_id, flag.scope.organization_id):
            raise AccessDeniedException(extra={"flag_id": str(flag_id)})

        moved = await self._move(
            flag,
            PersonalScope(user_id=user_id),
            AuditLogType.EXPORTED,
            f"Exported flag '{flag.key}' to personal scope",
            user_id,
        )
        track_flag_mutation("export")
        return moved

    # ──────────────────────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────────────────────

    async def _move(
        self,
        flag: Flag,
        destination: FlagScope,
        audit_type: AuditLogType,
        message: str,
        user_id: UUID,
    ) -> Flag:
        await self._ensure_key_free(flag.key, destination)
        created = await self._store.create_flag(
            key=flag.key,
            type=flag.type,
            default_value=flag.default_value,
            description=flag.description,
            scope=destination,
            enabled=flag.enabled,
        )
        try:
            try:
                await self._store.delete_flag(flag.id)
            except StoreUnavailableException:
                await self._discard_copy(created.id)
                raise
            # One entry on the surviving flag covers both sides of the move.
            await self._store.create_audit_log(
                audit_type, f"{message} (previous id {flag.id})", created.id, user_id
            )
        finally:
            await self._cache.invalidate_flag(flag.id)
            await self._cache.invalidate_flag(created.id)
            await self._invalidate_scope(flag.scope, [flag.id, created.id])
            await self._invalidate_scope(destination, [flag.id, created.id])

        logger.info(
            "Moved feature flag: %s",
            flag.key,
            extra={
                "old_flag_id": str(flag.id),
                "new_flag_id": str(created.id),
                "from_scope": flag.scope.kind,
                "to_scope": destination.kind,
            },
        )
        await self._publish(
            FeatureFlagEventType.DELETED,
            FlagDeletedPayload(flag_id=flag.id, user_id=user_id),
        )
        await self._publish(
            FeatureFlagEventType.CREATED,
            FlagChangedPayload(flag=created.resolve(), user_id=user_id),
        )
        return created

    async def _discard_copy(self, flag_id: UUID) -> None:
        """Remove the new copy of a flag whose original could not be deleted."""
        try:
            await self._store.delete_flag(flag_id)
        except (NotFoundException, StoreUnavailableException) as e:
            logger.error(
                "Could not remove copy of moved flag",
                extra={"flag_id": str(flag_id), "error": str(e)},
            )

    async def _get_existing(self, flag_id: UUID) -> Flag:
        flag = await self._store.get_flag(flag_id)
        if flag is None:
            raise NotFoundException(
                f"Feature flag {flag_id} not found",
                type="flag-not-found",
                extra={"flag_id": str(flag_id)},
            )
        return flag

    async def _require_flag(self, flag_id: UUID, user_id: UUID) -> Flag:
        """Read a flag from the store and check the user may see it."""
        flag = await self._get_existing(flag_id)
        if not await self._has_access(flag, user_id):
            raise AccessDeniedException(extra={"flag_id": str(flag_id)})
        return flag

    async def _has_access(self, flag: Flag, user_id: UUID) -> bool:
        if isinstance(flag.scope, PersonalScope):
            return flag.scope.user_id == user_id
        return await self._store.is_member(user_id, flag.scope.organization_id)

    async def _require_manage(self, flag: Flag, user_id: UUID) -> None:
        """Managing other users' overrides needs ownership or the admin role."""
        if isinstance(flag.scope, PersonalScope):
            allowed = flag.scope.user_id == user_id
        else:
            allowed = await self._store.is_admin(user_id, flag.scope.organization_id)
        if not allowed:
            raise AccessDeniedException(
                "You cannot manage overrides for other users on this flag",
                extra={"flag_id": str(flag.id)},
            )

    async def _ensure_key_free(
        self, key: str, scope: FlagScope, *, exclude_id: UUID | None = None
    ) -> None:
        if await self._store.exists(key, scope, exclude_id=exclude_id):
            raise AlreadyExistsException(
                f"A flag with key '{key}' already exists",
                extra={"key": key, "scope": scope.kind},
            )

    async def _invalidate_scope(self, scope: FlagScope, flag_ids: list[UUID]) -> None:
        if isinstance(scope, PersonalScope):
            await self._cache.invalidate_user(scope.user_id)
        else:
            await self._cache.invalidate_organization(scope.organization_id, flag_ids)

    async def _describe_user(self, user_id: UUID) -> str:
        """Best-effort email for audit messages, falling back to the raw id."""
        try:
            email = await self._store.get_user_email(user_id)
        except Exception as e:
            logger.warning(
                "User lookup failed for audit message",
                extra={"user_id": str(user_id), "error": str(e)},
            )
            return str(user_id)
        return email or str(user_id)

    async def _publish(self, event: FeatureFlagEventType, payload: BaseModel) -> None:
        try:
            await self._publisher.publish(event.value, payload)
        except Exception as e:
            logger.warning(
                "Failed to publish feature flag event",
                extra={"event": event.value, "error": str(e)},
            )


def _state(enabled: bool) -> str:
    return "enabled" if enabled else "disabled"
