"""Access gating for credit-unlocked resources."""

from apoyo.gate.access import (
    CONTACT_POLICY,
    NAME_PLACEHOLDER,
    AccessGate,
    FieldPolicy,
    UnlockState,
    abbreviate_name,
)

__all__ = [
    "AccessGate",
    "FieldPolicy",
    "UnlockState",
    "CONTACT_POLICY",
    "NAME_PLACEHOLDER",
    "abbreviate_name",
]
