"""Ledger errors.

These are surfaced precisely: each one is an outcome the caller must react
to. ``LedgerConflict`` is the exception, it stays inside the spend protocol.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for credit ledger errors."""

    pass


class InsufficientCredits(LedgerError):
    """The account cannot cover the cost. No state was changed."""

    def __init__(self, balance: int, cost: int):
        self.balance = balance
        self.cost = cost
        super().__init__(f"Insufficient credits: balance {balance}, cost {cost}")


class LedgerConflict(LedgerError):
    """A write lost a race against a concurrent request."""

    pass


class DuplicateUnlock(LedgerConflict):
    """The (user, resource) unlock record already exists."""

    def __init__(self, user_id: str, resource_id: str):
        self.user_id = user_id
        self.resource_id = resource_id
        super().__init__(f"Unlock already recorded for user {user_id}, resource {resource_id}")


class LedgerUnavailable(LedgerError):
    """The backing store failed or timed out. Retrying the unlock is safe."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Ledger {operation} failed: {reason}")


class UnknownAccount(LedgerError):
    """No credit account exists for the user."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"No credit account for user {user_id}")
