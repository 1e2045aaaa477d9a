"""Persistence interface consumed by the flag service.

The service depends only on this protocol. ``SqlAlchemyFlagStore`` in
``repository.py`` is the shipped implementation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol
from uuid import UUID

if TYPE_CHECKING:
    from .models import AuditLogType, FlagType
    from .schemas import AuditLogEntry, Flag, FlagScope, Override


class FlagStore(Protocol):
    """Durable source of truth for flags, overrides, audit logs and membership.

    Lookups return None for absent rows. Mutations of rows that are gone
    raise ``NotFoundException``. Persistence faults raise
    ``StoreUnavailableException``.
    """

    # Flags

    async def get_flag(self, flag_id: UUID) -> Flag | None: ...

    async def create_flag(
        self,
        *,
        key: str,
        type: FlagType,
        default_value: str,
        description: str | None,
        scope: FlagScope,
        enabled: bool = False,
    ) -> Flag: ...

    async def save_flag(self, flag: Flag) -> Flag:
        """Persist key, type, default value and description. Never touches ``enabled``."""
        ...

    async def delete_flag(self, flag_id: UUID) -> None:
        """Delete a flag together with its overrides and audit entries."""
        ...

    async def exists(self, key: str, scope: FlagScope, *, exclude_id: UUID | None = None) -> bool: ...

    async def list_user_flags(self, user_id: UUID) -> list[Flag]: ...

    async def list_organization_flags(self, organization_id: UUID) -> list[Flag]: ...

    async def list_visible_flags_with_overrides(
        self, user_id: UUID
    ) -> list[tuple[Flag, Override | None]]:
        """Every flag visible to the user joined with the user's own override."""
        ...

    # Enabled bit

    async def is_enabled(self, flag_id: UUID) -> bool: ...

    async def set_enabled(self, flag_id: UUID, enabled: bool) -> None: ...

    # Overrides

    async def get_overrides(self, flag_id: UUID) -> list[Override]: ...

    async def find_override(self, override_id: UUID) -> Override | None: ...

    async def find_user_override(self, flag_id: UUID, user_id: UUID) -> Override | None: ...

    async def save_override(self, flag_id: UUID, user_id: UUID, value: str) -> Override:
        """Insert an override. Fails if one already exists for the pair."""
        ...

    async def delete_override(self, override_id: UUID) -> None: ...

    # Audit

    async def create_audit_log(
        self, type: AuditLogType, message: str, flag_id: UUID, user_id: UUID
    ) -> AuditLogEntry: ...

    async def get_audit_logs(self, flag_id: UUID) -> list[AuditLogEntry]: ...

    # Membership

    async def is_member(self, user_id: UUID, organization_id: UUID) -> bool: ...

    async def is_admin(self, user_id: UUID, organization_id: UUID) -> bool: ...

    async def get_user_email(self, user_id: UUID) -> str | None: ...
