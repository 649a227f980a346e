"""Field masking for credit-gated resources.

A locked view keeps every field except the gated ones: identity fields are
reduced to initials and contact-method fields become null. Every view gets
an ``isUnlocked`` flag so clients can offer the unlock.

Masking is pure. It runs on every read, and a cached masked body must be
keyed per user (see ``CacheTier.USER_PRIVATE``).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from apoyo.security.roles import Role

NAME_PLACEHOLDER = "??"


def abbreviate_name(name: str | None) -> str:
    """Initials of a name, uppercased, at most two characters.

    >>> abbreviate_name("Jane Doe")
    'JD'
    >>> abbreviate_name("")
    '??'
    """
    if not name:
        return NAME_PLACEHOLDER
    initials = "".join(token[0].upper() for token in name.split())[:2]
    return initials or NAME_PLACEHOLDER


@dataclass(frozen=True)
class FieldPolicy:
    """Which resource fields are gated and how.

    Attributes:
        identity_fields: Free-text identity, abbreviated when locked
        contact_fields: Contact methods and other details, nulled when locked
        owner_field: Field holding the owning company id
    """

    identity_fields: frozenset[str]
    contact_fields: frozenset[str]
    owner_field: str = "company_id"

    @property
    def gated_fields(self) -> frozenset[str]:
        return self.identity_fields | self.contact_fields


CONTACT_POLICY = FieldPolicy(
    identity_fields=frozenset({"name"}),
    contact_fields=frozenset({"position", "email", "phone", "whatsapp"}),
)


@dataclass(frozen=True)
class UnlockState:
    """What the requester holds for one resource.

    Attributes:
        unlocked: An unlock record exists for (requester, resource)
        role: Requester's role
        tenant_id: Requester's company, for company_admin ownership checks
    """

    unlocked: bool = False
    role: Role = Role.USER
    tenant_id: str | None = None


class AccessGate:
    """Produces masked or full views of gated resources."""

    def __init__(self, policy: FieldPolicy = CONTACT_POLICY):
        self.policy = policy

    def is_revealed(self, resource: Mapping[str, Any], state: UnlockState) -> bool:
        if state.unlocked or state.role is Role.SUPER_ADMIN:
            return True
        if state.role is Role.COMPANY_ADMIN and state.tenant_id:
            owner = resource.get(self.policy.owner_field)
            return owner is not None and str(owner) == state.tenant_id
        return False

    def view(self, resource: Mapping[str, Any], state: UnlockState) -> dict[str, Any]:
        """Return a copy of ``resource`` with gated fields masked unless revealed."""
        revealed = self.is_revealed(resource, state)
        result = dict(resource)
        if not revealed:
            for name in self.policy.identity_fields:
                result[name] = abbreviate_name(resource.get(name))
            for name in self.policy.contact_fields:
                result[name] = None
        result["isUnlocked"] = revealed
        return result
