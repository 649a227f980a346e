"""Roles for the Apoyo API.

Roles decide two things at the core:
- which authorized view a request may receive (folded into cache keys)
- whether gated resource fields are revealed without an unlock

Admin role tables themselves live elsewhere; these are the roles carried in tokens.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Effective role of a requester."""

    ANONYMOUS = "anonymous"
    USER = "user"
    COMPANY_ADMIN = "company_admin"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def parse(cls, value: str | None) -> "Role | None":
        """Return the role for a claim value, or None if unknown."""
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


# Roles allowed on admin endpoints
ADMIN_ROLES: frozenset[Role] = frozenset({Role.COMPANY_ADMIN, Role.SUPER_ADMIN})

# Roles whose views are always filtered to their own company
TENANT_BOUND_ROLES: frozenset[Role] = frozenset({Role.COMPANY_ADMIN})


def is_admin(role: Role) -> bool:
    """Check whether a role may use admin endpoints."""
    return role in ADMIN_ROLES
