"""Organizations and membership consumed read-only by the flag core."""

from __future__ import annotations

from .models import MemberRole, Organization, OrganizationMember, User

__all__ = ["MemberRole", "Organization", "OrganizationMember", "User"]
