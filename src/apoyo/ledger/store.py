"""Backing store contract for the credit ledger.

Each method is one independent, autocommitted round trip. The only atomic
primitives a store must offer are the guarded debit (never below zero) and
the uniqueness constraint on (user, resource) unlock records.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Protocol

from apoyo.ledger.errors import DuplicateUnlock, UnknownAccount
from apoyo.ledger.models import UnlockRecord


class LedgerStore(Protocol):
    """Operations the ledger needs from its store of record."""

    async def get_unlock(self, user_id: str, resource_id: str) -> UnlockRecord | None: ...

    async def get_balance(self, user_id: str) -> int:
        """Raises UnknownAccount when the user has no account."""
        ...

    async def debit(self, user_id: str, cost: int) -> int | None:
        """Subtract ``cost`` only if the balance covers it.

        Returns the new balance, or None when the balance was too low.
        """
        ...

    async def credit(self, user_id: str, amount: int) -> int: ...

    async def insert_unlock(self, user_id: str, resource_id: str, cost: int) -> UnlockRecord:
        """Raises DuplicateUnlock when the record already exists."""
        ...

    async def unlocked_among(self, user_id: str, resource_ids: list[str]) -> set[str]:
        """Subset of ``resource_ids`` the user has unlocked."""
        ...

    async def list_unlocks(self, user_id: str, limit: int, offset: int) -> list[UnlockRecord]: ...

    async def count_unlocks(self, user_id: str) -> int: ...


class MemoryLedgerStore:
    """Process-local ledger store.

    Every call yields to the event loop before touching state, so concurrent
    spends interleave between steps the way they would against a database.
    """

    def __init__(self, balances: dict[str, int] | None = None):
        self.balances: dict[str, int] = dict(balances or {})
        self.unlocks: dict[tuple[str, str], UnlockRecord] = {}

    def add_account(self, user_id: str, balance: int = 0) -> None:
        if balance < 0:
            raise ValueError("Balance must be non-negative")
        self.balances[user_id] = balance

    async def get_unlock(self, user_id: str, resource_id: str) -> UnlockRecord | None:
        await asyncio.sleep(0)
        return self.unlocks.get((user_id, resource_id))

    async def get_balance(self, user_id: str) -> int:
        await asyncio.sleep(0)
        if user_id not in self.balances:
            raise UnknownAccount(user_id)
        return self.balances[user_id]

    async def debit(self, user_id: str, cost: int) -> int | None:
        await asyncio.sleep(0)
        if user_id not in self.balances:
            raise UnknownAccount(user_id)
        if self.balances[user_id] < cost:
            return None
        self.balances[user_id] -= cost
        return self.balances[user_id]

    async def credit(self, user_id: str, amount: int) -> int:
        await asyncio.sleep(0)
        if user_id not in self.balances:
            raise UnknownAccount(user_id)
        self.balances[user_id] += amount
        return self.balances[user_id]

    async def insert_unlock(self, user_id: str, resource_id: str, cost: int) -> UnlockRecord:
        await asyncio.sleep(0)
        key = (user_id, resource_id)
        if key in self.unlocks:
            raise DuplicateUnlock(user_id, resource_id)
        record = UnlockRecord(
            user_id=user_id,
            resource_id=resource_id,
            credits_spent=cost,
            unlocked_at=datetime.now(UTC),
        )
        self.unlocks[key] = record
        return record

    async def unlocked_among(self, user_id: str, resource_ids: list[str]) -> set[str]:
        await asyncio.sleep(0)
        return {r for r in resource_ids if (user_id, r) in self.unlocks}

    async def list_unlocks(self, user_id: str, limit: int, offset: int) -> list[UnlockRecord]:
        await asyncio.sleep(0)
        records = sorted(
            (r for (u, _), r in self.unlocks.items() if u == user_id),
            key=lambda r: r.unlocked_at,
            reverse=True,
        )
        return records[offset : offset + limit]

    async def count_unlocks(self, user_id: str) -> int:
        await asyncio.sleep(0)
        return sum(1 for (u, _) in self.unlocks if u == user_id)
