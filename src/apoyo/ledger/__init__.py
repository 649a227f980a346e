"""Credit ledger for the Apoyo API.

Provides at-most-once charging for unlocking gated resources:
- Check / reserve / commit / compensate spend protocol
- Uniqueness constraint on (user, resource) as the atomicity anchor
- SQL and in-memory backing stores
"""

from apoyo.ledger.errors import (
    DuplicateUnlock,
    InsufficientCredits,
    LedgerConflict,
    LedgerError,
    LedgerUnavailable,
    UnknownAccount,
)
from apoyo.ledger.ledger import CreditLedger
from apoyo.ledger.models import CreditAccount, UnlockRecord, UnlockResult, UnlockStatus
from apoyo.ledger.store import LedgerStore, MemoryLedgerStore

__all__ = [
    "CreditLedger",
    "LedgerStore",
    "MemoryLedgerStore",
    # Models
    "CreditAccount",
    "UnlockRecord",
    "UnlockResult",
    "UnlockStatus",
    # Errors
    "LedgerError",
    "InsufficientCredits",
    "LedgerConflict",
    "DuplicateUnlock",
    "LedgerUnavailable",
    "UnknownAccount",
]
