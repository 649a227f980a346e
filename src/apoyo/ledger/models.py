"""Ledger value types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class CreditAccount:
    user_id: str
    balance: int


@dataclass(frozen=True)
class UnlockRecord:
    """Permanent proof that a user paid to reveal a resource."""

    user_id: str
    resource_id: str
    credits_spent: int
    unlocked_at: datetime


@dataclass(frozen=True)
class UnlockResult:
    """Outcome of a spend.

    Exactly one of ``granted`` and ``already_unlocked`` is true.
    """

    granted: bool
    already_unlocked: bool
    remaining_balance: int


@dataclass(frozen=True)
class UnlockStatus:
    is_unlocked: bool
    balance: int
    unlocked_at: datetime | None = None
