"""Tests for the credit-gated unlock ledger."""

from __future__ import annotations

import asyncio

import pytest

from apoyo.ledger.errors import (
    DuplicateUnlock,
    InsufficientCredits,
    LedgerUnavailable,
    UnknownAccount,
)
from apoyo.ledger.ledger import CreditLedger
from apoyo.ledger.models import UnlockRecord, UnlockResult
from apoyo.ledger.store import MemoryLedgerStore


class RacingStore(MemoryLedgerStore):
    """Store where another request commits the unlock just before our insert."""

    def __init__(self, balances: dict[str, int], credit_failures: int = 0):
        super().__init__(balances)
        self.credit_failures = credit_failures
        self.credit_calls = 0

    async def insert_unlock(self, user_id: str, resource_id: str, cost: int) -> UnlockRecord:
        await super().insert_unlock(user_id, resource_id, cost)
        raise DuplicateUnlock(user_id, resource_id)

    async def credit(self, user_id: str, amount: int) -> int:
        self.credit_calls += 1
        if self.credit_calls <= self.credit_failures:
            raise ConnectionError("connection reset")
        return await super().credit(user_id, amount)


class BrokenInsertStore(MemoryLedgerStore):
    """Store whose insert fails without writing."""

    async def insert_unlock(self, user_id: str, resource_id: str, cost: int) -> UnlockRecord:
        raise ConnectionError("connection reset")


class SlowInsertStore(MemoryLedgerStore):
    """Store whose insert commits well after the debit."""

    async def insert_unlock(self, user_id: str, resource_id: str, cost: int) -> UnlockRecord:
        await asyncio.sleep(0.05)
        return await super().insert_unlock(user_id, resource_id, cost)


class SlowDebitStore(MemoryLedgerStore):
    async def debit(self, user_id: str, cost: int) -> int | None:
        await asyncio.sleep(5)
        return await super().debit(user_id, cost)


@pytest.fixture
def ledger_store() -> MemoryLedgerStore:
    return MemoryLedgerStore({"u1": 5, "broke": 0})


@pytest.fixture
def ledger(ledger_store: MemoryLedgerStore) -> CreditLedger:
    return CreditLedger(ledger_store, timeout=1.0)


class TestSpend:
    """Test single spends."""

    async def test_first_spend_grants(
        self, ledger: CreditLedger, ledger_store: MemoryLedgerStore
    ) -> None:
        result = await ledger.spend("u1", "c1", 1)

        assert result == UnlockResult(granted=True, already_unlocked=False, remaining_balance=4)
        assert ledger_store.balances["u1"] == 4
        assert ("u1", "c1") in ledger_store.unlocks

    async def test_repeat_spend_is_free(
        self, ledger: CreditLedger, ledger_store: MemoryLedgerStore
    ) -> None:
        """A second unlock of the same resource never charges."""
        await ledger.spend("u1", "c1", 1)
        result = await ledger.spend("u1", "c1", 1)

        assert result == UnlockResult(granted=False, already_unlocked=True, remaining_balance=4)
        assert ledger_store.balances["u1"] == 4

    async def test_insufficient_credits(
        self, ledger: CreditLedger, ledger_store: MemoryLedgerStore
    ) -> None:
        with pytest.raises(InsufficientCredits) as exc_info:
            await ledger.spend("broke", "c1", 1)

        assert exc_info.value.balance == 0
        assert exc_info.value.cost == 1
        assert ledger_store.unlocks == {}

    async def test_already_unlocked_with_zero_balance(
        self, ledger: CreditLedger, ledger_store: MemoryLedgerStore
    ) -> None:
        """An existing unlock is reported even when the balance is empty."""
        ledger_store.add_account("spent", 1)
        await ledger.spend("spent", "c1", 1)

        result = await ledger.spend("spent", "c1", 1)
        assert result.already_unlocked
        assert result.remaining_balance == 0

    async def test_unknown_account(self, ledger: CreditLedger) -> None:
        with pytest.raises(UnknownAccount):
            await ledger.spend("ghost", "c1", 1)

    async def test_cost_must_be_positive(self, ledger: CreditLedger) -> None:
        with pytest.raises(ValueError):
            await ledger.spend("u1", "c1", 0)

    async def test_resources_are_charged_separately(self, ledger: CreditLedger) -> None:
        await ledger.spend("u1", "c1", 1)
        result = await ledger.spend("u1", "c2", 2)
        assert result.granted
        assert result.remaining_balance == 2


class TestConcurrentSpend:
    """Concurrent spends for one (user, resource) charge exactly once."""

    async def test_balance_of_one(
        self, ledger: CreditLedger, ledger_store: MemoryLedgerStore
    ) -> None:
        ledger_store.add_account("one", 1)

        results = await asyncio.gather(
            ledger.spend("one", "c1", 1),
            ledger.spend("one", "c1", 1),
            return_exceptions=True,
        )

        assert all(isinstance(r, UnlockResult) for r in results)
        assert sum(r.granted for r in results) == 1
        assert sum(r.already_unlocked for r in results) == 1
        assert ledger_store.balances["one"] == 0
        assert len(ledger_store.unlocks) == 1

    async def test_balance_of_one_with_slow_insert(self) -> None:
        """The loser waits for the winner's record instead of reporting a shortfall."""
        store = SlowInsertStore({"42": 1})
        ledger = CreditLedger(store, timeout=1.0)

        results = await asyncio.gather(
            ledger.spend("42", "99", 1),
            ledger.spend("42", "99", 1),
            return_exceptions=True,
        )

        assert all(isinstance(r, UnlockResult) for r in results)
        assert sum(r.granted for r in results) == 1
        assert sum(r.already_unlocked for r in results) == 1
        assert all(r.remaining_balance == 0 for r in results)
        assert store.balances["42"] == 0
        assert len(store.unlocks) == 1

    async def test_balance_spent_elsewhere_is_insufficient(self) -> None:
        """A debit refused because another resource took the credit still fails."""
        store = SlowInsertStore({"u1": 1})
        ledger = CreditLedger(store, timeout=1.0, race_attempts=2, race_backoff=0.01)

        results = await asyncio.gather(
            ledger.spend("u1", "c1", 1),
            ledger.spend("u1", "c2", 1),
            return_exceptions=True,
        )

        assert sum(isinstance(r, UnlockResult) and r.granted for r in results) == 1
        assert sum(isinstance(r, InsufficientCredits) for r in results) == 1
        assert store.balances["u1"] == 0
        assert len(store.unlocks) == 1

    async def test_loser_is_compensated(
        self, ledger: CreditLedger, ledger_store: MemoryLedgerStore
    ) -> None:
        """With enough balance for both, the losing debit is refunded."""
        results = await asyncio.gather(
            ledger.spend("u1", "c1", 1),
            ledger.spend("u1", "c1", 1),
        )

        assert sum(r.granted for r in results) == 1
        assert sum(r.already_unlocked for r in results) == 1
        assert ledger_store.balances["u1"] == 4
        assert len(ledger_store.unlocks) == 1

    async def test_many_concurrent_spends(
        self, ledger: CreditLedger, ledger_store: MemoryLedgerStore
    ) -> None:
        results = await asyncio.gather(*(ledger.spend("u1", "c1", 1) for _ in range(5)))

        assert sum(r.granted for r in results) == 1
        assert ledger_store.balances["u1"] == 4


class TestFailures:
    """Ledger failures surface and leave a safe state."""

    async def test_compensation_retries_once(self) -> None:
        store = RacingStore({"u1": 5}, credit_failures=1)
        ledger = CreditLedger(store)

        result = await ledger.spend("u1", "c1", 1)

        assert result.already_unlocked
        assert store.credit_calls == 2
        assert store.balances["u1"] == 5

    async def test_compensation_fails_twice(self) -> None:
        store = RacingStore({"u1": 5}, credit_failures=2)
        ledger = CreditLedger(store)

        with pytest.raises(LedgerUnavailable):
            await ledger.spend("u1", "c1", 1)
        assert store.balances["u1"] == 4

    async def test_failed_insert_is_refunded(self) -> None:
        """A reservation is undone when the unlock record did not land."""
        store = BrokenInsertStore({"u1": 5})
        ledger = CreditLedger(store)

        with pytest.raises(LedgerUnavailable) as exc_info:
            await ledger.spend("u1", "c1", 1)

        assert exc_info.value.operation == "insert_unlock"
        assert store.balances["u1"] == 5
        assert store.unlocks == {}

    async def test_timeout_is_unavailable(self) -> None:
        store = SlowDebitStore({"u1": 5})
        ledger = CreditLedger(store, timeout=0.01)

        with pytest.raises(LedgerUnavailable) as exc_info:
            await ledger.spend("u1", "c1", 1)

        assert exc_info.value.operation == "debit"
        assert store.balances["u1"] == 5
        assert store.unlocks == {}

    async def test_retry_after_failure_succeeds(self) -> None:
        """Retrying an unlock after a failure is safe."""
        store = SlowDebitStore({"u1": 5})
        with pytest.raises(LedgerUnavailable):
            await CreditLedger(store, timeout=0.01).spend("u1", "c1", 1)

        result = await CreditLedger(MemoryLedgerStore(store.balances)).spend("u1", "c1", 1)
        assert result.granted
        assert result.remaining_balance == 4


class TestReads:
    """Test status and listing."""

    async def test_status(self, ledger: CreditLedger) -> None:
        before = await ledger.status("u1", "c1")
        assert not before.is_unlocked
        assert before.balance == 5
        assert before.unlocked_at is None

        await ledger.spend("u1", "c1", 1)
        after = await ledger.status("u1", "c1")
        assert after.is_unlocked
        assert after.balance == 4
        assert after.unlocked_at is not None

    async def test_unlocked_among(self, ledger: CreditLedger) -> None:
        await ledger.spend("u1", "c1", 1)
        await ledger.spend("u1", "c3", 1)

        assert await ledger.unlocked_among("u1", ["c1", "c2", "c3"]) == {"c1", "c3"}
        assert await ledger.unlocked_among("u1", []) == set()

    async def test_unlocked_pages(self, ledger: CreditLedger) -> None:
        for resource in ("c1", "c2", "c3"):
            await ledger.spend("u1", resource, 1)

        records, total = await ledger.unlocked("u1", page=1, limit=2)
        assert total == 3
        assert len(records) == 2

        records, total = await ledger.unlocked("u1", page=2, limit=2)
        assert total == 3
        assert len(records) == 1
