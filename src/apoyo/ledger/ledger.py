"""Credit-gated unlock ledger.

The store offers no multi-statement transactions, so a spend runs as four
independently committed steps:

1. check     - an existing unlock record makes the call a no-op
2. reserve   - guarded debit of the cost (never below zero)
3. commit    - insert the unlock record under the (user, resource) unique constraint
4. compensate - on a uniqueness conflict, re-credit the reserved cost

The unique constraint is the only source of "exactly one charge"; the debit
is provisional until the insert commits. Reordering the steps changes the
compensation needed.

Ledger failures are never hidden: a timeout or backend error on any step is
an unsuccessful unlock (``LedgerUnavailable``), and the idempotency check in
step 1 makes a retry safe.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from apoyo.ledger.errors import (
    DuplicateUnlock,
    InsufficientCredits,
    LedgerConflict,
    LedgerError,
    LedgerUnavailable,
)
from apoyo.ledger.models import UnlockRecord, UnlockResult, UnlockStatus
from apoyo.ledger.store import LedgerStore
from apoyo.observability.logging import LogContext
from apoyo.observability.metrics import record_ledger_outcome

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CreditLedger:
    """Owns credit balances and unlock records."""

    def __init__(
        self,
        store: LedgerStore,
        timeout: float = 5.0,
        race_attempts: int = 5,
        race_backoff: float = 0.02,
    ):
        self.store = store
        self.timeout = timeout
        self.race_attempts = race_attempts
        self.race_backoff = race_backoff

    async def _op(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Run one store step under the ledger timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise LedgerUnavailable(operation, f"timed out after {self.timeout}s") from e
        except LedgerError:
            raise
        except Exception as e:
            raise LedgerUnavailable(operation, str(e) or e.__class__.__name__) from e

    async def spend(self, user_id: str, resource_id: str, cost: int) -> UnlockResult:
        """Charge ``cost`` once for revealing ``resource_id`` to ``user_id``.

        Repeated and concurrent calls for the same pair charge exactly once.

        Raises:
            ValueError: If cost is below 1
            InsufficientCredits: If the balance cannot cover the cost
            UnknownAccount: If the user has no credit account
            LedgerUnavailable: If a step failed or timed out
        """
        if cost < 1:
            raise ValueError("Unlock cost must be at least 1 credit")

        try:
            with LogContext(user_id=user_id):
                result = await self._spend(user_id, resource_id, cost)
        except InsufficientCredits:
            record_ledger_outcome("insufficient")
            raise
        except LedgerUnavailable:
            record_ledger_outcome("failed")
            raise

        record_ledger_outcome("granted" if result.granted else "already_unlocked")
        return result

    async def _spend(self, user_id: str, resource_id: str, cost: int) -> UnlockResult:
        # 1. check
        if await self._op("get_unlock", self.store.get_unlock(user_id, resource_id)):
            balance = await self._op("get_balance", self.store.get_balance(user_id))
            return UnlockResult(granted=False, already_unlocked=True, remaining_balance=balance)

        balance = await self._op("get_balance", self.store.get_balance(user_id))
        if balance < cost:
            raise InsufficientCredits(balance, cost)

        # 2. reserve
        remaining = await self._op("debit", self.store.debit(user_id, cost))
        if remaining is None:
            # The balance moved since it was read; a concurrent unlock of the
            # same resource may have spent it and still be committing its record
            return await self._await_concurrent_unlock(user_id, resource_id, cost)

        # 3. commit
        try:
            await self._op("insert_unlock", self.store.insert_unlock(user_id, resource_id, cost))
        except DuplicateUnlock:
            # 4. compensate
            logger.warning(
                f"Concurrent unlock of {resource_id} by user {user_id}; refunding {cost} credits"
            )
            balance = await self._refund(user_id, resource_id, cost)
            record_ledger_outcome("compensated")
            return UnlockResult(granted=False, already_unlocked=True, remaining_balance=balance)
        except LedgerUnavailable:
            await self._refund_if_absent(user_id, resource_id, cost)
            raise

        logger.info(f"User {user_id} unlocked {resource_id} for {cost} credits")
        return UnlockResult(granted=True, already_unlocked=False, remaining_balance=remaining)

    async def _await_concurrent_unlock(
        self, user_id: str, resource_id: str, cost: int
    ) -> UnlockResult:
        """Poll for a racing unlock record before reporting a shortfall.

        Backs off exponentially for at most ``race_attempts`` re-checks, all
        within the ledger timeout.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        delay = self.race_backoff
        for attempt in range(self.race_attempts + 1):
            if await self._op("get_unlock", self.store.get_unlock(user_id, resource_id)):
                balance = await self._op("get_balance", self.store.get_balance(user_id))
                return UnlockResult(granted=False, already_unlocked=True, remaining_balance=balance)
            left = deadline - loop.time()
            if attempt == self.race_attempts or left <= 0:
                break
            await asyncio.sleep(min(delay, left))
            delay *= 2

        balance = await self._op("get_balance", self.store.get_balance(user_id))
        raise InsufficientCredits(balance, cost)

    async def _refund(self, user_id: str, resource_id: str, cost: int) -> int:
        """Re-credit a reservation, retrying once."""
        try:
            return await self._op("credit", self.store.credit(user_id, cost))
        except LedgerUnavailable as first:
            conflict = LedgerConflict(f"Refund to user {user_id} failed once: {first.reason}")
            logger.warning(f"{conflict}; retrying")

        try:
            return await self._op("credit", self.store.credit(user_id, cost))
        except LedgerUnavailable:
            logger.error(
                f"Refund of {cost} credits to user {user_id} for resource {resource_id} "
                "failed twice; balance needs manual correction"
            )
            raise

    async def _refund_if_absent(self, user_id: str, resource_id: str, cost: int) -> None:
        """Undo the reservation of a failed insert, if the insert did not land."""
        try:
            record = await self._op("get_unlock", self.store.get_unlock(user_id, resource_id))
        except LedgerUnavailable as e:
            logger.error(
                f"Cannot confirm unlock of {resource_id} for user {user_id} after a failed "
                f"insert ({e.reason}); no refund made"
            )
            return

        if record is not None:
            return

        try:
            await self._refund(user_id, resource_id, cost)
        except LedgerUnavailable:
            # Already logged; the insert failure is what the caller sees
            return

    async def status(self, user_id: str, resource_id: str) -> UnlockStatus:
        """Whether the user has unlocked the resource, plus their balance."""
        record = await self._op("get_unlock", self.store.get_unlock(user_id, resource_id))
        balance = await self._op("get_balance", self.store.get_balance(user_id))
        return UnlockStatus(
            is_unlocked=record is not None,
            balance=balance,
            unlocked_at=record.unlocked_at if record else None,
        )

    async def unlocked_among(self, user_id: str, resource_ids: list[str]) -> set[str]:
        """Which of ``resource_ids`` the user has unlocked, in one round trip."""
        if not resource_ids:
            return set()
        return await self._op(
            "unlocked_among", self.store.unlocked_among(user_id, list(resource_ids))
        )

    async def unlocked(
        self, user_id: str, page: int = 1, limit: int = 20
    ) -> tuple[list[UnlockRecord], int]:
        """One page of the user's unlock records, newest first, with the total."""
        page = max(page, 1)
        limit = max(limit, 1)
        records = await self._op(
            "list_unlocks", self.store.list_unlocks(user_id, limit, (page - 1) * limit)
        )
        total = await self._op("count_unlocks", self.store.count_unlocks(user_id))
        return records, total
