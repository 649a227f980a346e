"""Repositories over the store of record.

- ContactRepository / CompanyRepository: the CRUD reads the HTTP surface needs
- SqlLedgerStore: the credit ledger's backing store, one autocommitted
  statement per call, with constraint violations mapped to ledger errors
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import String, cast, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apoyo.ledger.errors import DuplicateUnlock, UnknownAccount
from apoyo.ledger.models import UnlockRecord
from apoyo.persistence.tables import (
    CompanyTable,
    ContactTable,
    CreditAccountTable,
    UnlockRecordTable,
)

_UNIQUE_VIOLATION = "23505"


def _is_unique_violation(error: IntegrityError) -> bool:
    """Tell a uniqueness conflict apart from other integrity errors."""
    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return str(code) == _UNIQUE_VIOLATION
    message = str(orig).lower()
    return "unique" in message or "uq_unlock_user_resource" in message


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class ContactRepository:
    """Contact reads and deletes, joined with the owning company."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _select(self) -> Any:
        return select(
            ContactTable,
            CompanyTable.name.label("company_name"),
            CompanyTable.logo_url.label("company_logo_url"),
            CompanyTable.color.label("company_color"),
        ).outerjoin(CompanyTable, ContactTable.company_id == CompanyTable.id)

    @staticmethod
    def _to_dict(row: Any) -> dict[str, Any]:
        contact: ContactTable = row[0]
        return {
            "id": contact.id,
            "company_id": contact.company_id,
            "name": contact.name,
            "position": contact.position,
            "email": contact.email,
            "phone": contact.phone,
            "whatsapp": contact.whatsapp,
            "city": contact.city,
            "location": contact.location or [],
            "created_at": contact.created_at.isoformat() if contact.created_at else None,
            "company": {
                "id": contact.company_id,
                "name": row.company_name,
                "logo_url": row.company_logo_url,
                "color": row.company_color,
            },
        }

    async def get(self, contact_id: int) -> dict[str, Any] | None:
        result = await self.session.execute(self._select().where(ContactTable.id == contact_id))
        row = result.first()
        return self._to_dict(row) if row else None

    async def list_page(
        self,
        limit: int = 20,
        offset: int = 0,
        search: str | None = None,
        company_id: int | None = None,
        city: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        """One page of contacts, newest first, with the filtered total."""
        conditions = []
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    ContactTable.name.ilike(pattern),
                    ContactTable.position.ilike(pattern),
                    ContactTable.city.ilike(pattern),
                )
            )
        if company_id is not None:
            conditions.append(ContactTable.company_id == company_id)
        if city:
            conditions.append(ContactTable.city == city)

        stmt = (
            self._select()
            .where(*conditions)
            .order_by(ContactTable.created_at.desc(), ContactTable.id.desc())
            .limit(limit)
            .offset(offset)
        )
        rows = (await self.session.execute(stmt)).all()

        total_stmt = select(func.count()).select_from(ContactTable).where(*conditions)
        total = (await self.session.execute(total_stmt)).scalar_one()
        return [self._to_dict(row) for row in rows], int(total)

    async def get_many(self, contact_ids: list[int]) -> dict[int, dict[str, Any]]:
        if not contact_ids:
            return {}
        result = await self.session.execute(self._select().where(ContactTable.id.in_(contact_ids)))
        return {row[0].id: self._to_dict(row) for row in result.all()}

    async def list_unlocked(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> tuple[list[dict[str, Any]], int]:
        """Contacts the user has unlocked, newest unlock first, with the total.

        Unlock records whose contact no longer exists are left out of both.
        """
        unlocked = UnlockRecordTable.resource_id == cast(ContactTable.id, String)
        stmt = (
            self._select()
            .add_columns(UnlockRecordTable.unlocked_at, UnlockRecordTable.credits_spent)
            .join(UnlockRecordTable, unlocked)
            .where(UnlockRecordTable.user_id == user_id)
            .order_by(UnlockRecordTable.unlocked_at.desc(), UnlockRecordTable.id.desc())
            .limit(limit)
            .offset(offset)
        )
        rows = (await self.session.execute(stmt)).all()

        total_stmt = (
            select(func.count())
            .select_from(UnlockRecordTable)
            .join(ContactTable, unlocked)
            .where(UnlockRecordTable.user_id == user_id)
        )
        total = (await self.session.execute(total_stmt)).scalar_one()

        contacts = [
            {
                **self._to_dict(row),
                "isUnlocked": True,
                "unlockedAt": _as_utc(row.unlocked_at).isoformat(),
                "creditsSpent": row.credits_spent,
            }
            for row in rows
        ]
        return contacts, int(total)

    async def delete(self, contact_id: int) -> bool:
        """Delete a contact.

        Returns:
            True if deleted, False if not found.
        """
        row = await self.session.get(ContactTable, contact_id)
        if row is None:
            return False
        await self.session.delete(row)
        await self.session.flush()
        return True


class CompanyRepository:
    """Company lookups."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_slugs(self) -> list[dict[str, Any]]:
        stmt = select(CompanyTable.id, CompanyTable.name, CompanyTable.slug).order_by(
            CompanyTable.name
        )
        rows = (await self.session.execute(stmt)).all()
        return [{"id": row.id, "name": row.name, "slug": row.slug} for row in rows]


class SqlLedgerStore:
    """Ledger store on the relational database.

    Every method runs in its own session and commits immediately; the ledger
    never relies on a transaction spanning two calls.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create_account(self, user_id: str, balance: int = 0) -> None:
        """Open a credit account. Granting credits is otherwise external."""
        async with self.session_factory() as session:
            await session.execute(
                insert(CreditAccountTable).values(user_id=user_id, balance=balance)
            )
            await session.commit()

    async def get_unlock(self, user_id: str, resource_id: str) -> UnlockRecord | None:
        stmt = select(UnlockRecordTable).where(
            UnlockRecordTable.user_id == user_id,
            UnlockRecordTable.resource_id == resource_id,
        )
        async with self.session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return self._to_record(row) if row else None

    async def get_balance(self, user_id: str) -> int:
        stmt = select(CreditAccountTable.balance).where(CreditAccountTable.user_id == user_id)
        async with self.session_factory() as session:
            balance = (await session.execute(stmt)).scalar_one_or_none()
        if balance is None:
            raise UnknownAccount(user_id)
        return int(balance)

    async def debit(self, user_id: str, cost: int) -> int | None:
        # The WHERE guard makes check-and-decrement a single statement
        stmt = (
            update(CreditAccountTable)
            .where(CreditAccountTable.user_id == user_id, CreditAccountTable.balance >= cost)
            .values(balance=CreditAccountTable.balance - cost)
            .returning(CreditAccountTable.balance)
        )
        async with self.session_factory() as session:
            remaining = (await session.execute(stmt)).scalar_one_or_none()
            await session.commit()
        if remaining is None:
            # Distinguish "too low" from "no account"
            await self.get_balance(user_id)
            return None
        return int(remaining)

    async def credit(self, user_id: str, amount: int) -> int:
        stmt = (
            update(CreditAccountTable)
            .where(CreditAccountTable.user_id == user_id)
            .values(balance=CreditAccountTable.balance + amount)
            .returning(CreditAccountTable.balance)
        )
        async with self.session_factory() as session:
            balance = (await session.execute(stmt)).scalar_one_or_none()
            await session.commit()
        if balance is None:
            raise UnknownAccount(user_id)
        return int(balance)

    async def insert_unlock(self, user_id: str, resource_id: str, cost: int) -> UnlockRecord:
        row = UnlockRecordTable(
            user_id=user_id,
            resource_id=resource_id,
            credits_spent=cost,
            unlocked_at=datetime.now(UTC),
        )
        async with self.session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if _is_unique_violation(e):
                    raise DuplicateUnlock(user_id, resource_id) from e
                raise
            return self._to_record(row)

    async def unlocked_among(self, user_id: str, resource_ids: list[str]) -> set[str]:
        stmt = select(UnlockRecordTable.resource_id).where(
            UnlockRecordTable.user_id == user_id,
            UnlockRecordTable.resource_id.in_(resource_ids),
        )
        async with self.session_factory() as session:
            return set((await session.execute(stmt)).scalars().all())

    async def list_unlocks(self, user_id: str, limit: int, offset: int) -> list[UnlockRecord]:
        stmt = (
            select(UnlockRecordTable)
            .where(UnlockRecordTable.user_id == user_id)
            .order_by(UnlockRecordTable.unlocked_at.desc(), UnlockRecordTable.id.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [self._to_record(row) for row in rows]

    async def count_unlocks(self, user_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(UnlockRecordTable)
            .where(UnlockRecordTable.user_id == user_id)
        )
        async with self.session_factory() as session:
            return int((await session.execute(stmt)).scalar_one())

    @staticmethod
    def _to_record(row: UnlockRecordTable) -> UnlockRecord:
        return UnlockRecord(
            user_id=row.user_id,
            resource_id=row.resource_id,
            credits_spent=row.credits_spent,
            unlocked_at=_as_utc(row.unlocked_at),
        )
