"""SQLAlchemy ORM models for the store of record.

Only the tables the core touches are modelled:
- companies and contacts (the gated resource)
- credit accounts and unlock records (the ledger)
- chip templates in both schema generations (read by the schema adapter)

The ledger relies on two database constraints instead of transactions:
``ck_credit_balance_non_negative`` and ``uq_unlock_user_resource``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class CompanyTable(Base):
    """Tenant companies."""

    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    logo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class ContactTable(Base):
    """Company contacts, revealed per user by unlocking."""

    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int | None] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    position: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    whatsapp: Mapped[str | None] = mapped_column(String(64), nullable=True)
    city: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    location: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class CreditAccountTable(Base):
    """Per-user credit balance."""

    __tablename__ = "credit_accounts"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_credit_balance_non_negative"),)


class UnlockRecordTable(Base):
    """One row per (user, resource) unlock. Never updated."""

    __tablename__ = "unlock_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    credits_spent: Mapped[int] = mapped_column(Integer, nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "resource_id", name="uq_unlock_user_resource"),
        CheckConstraint("credits_spent >= 1", name="ck_unlock_credits_positive"),
        Index("idx_unlock_user_unlocked_at", "user_id", "unlocked_at"),
    )


class ChipTemplateTable(Base):
    """Chip (tag) templates shared by job listings."""

    __tablename__ = "chip_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chip_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    chip_label: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class JobChipTemplateTable(Base):
    """Current job-to-chip link table (schema v2)."""

    __tablename__ = "job_chip_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    chip_template_id: Mapped[int] = mapped_column(
        ForeignKey("chip_templates.id", ondelete="CASCADE"), nullable=False
    )
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class JobOfferChipTable(Base):
    """Legacy per-job chip copies (schema v1)."""

    __tablename__ = "job_offer_chips"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    chip_key: Mapped[str] = mapped_column(String(255), nullable=False)
    chip_label: Mapped[str] = mapped_column(String(255), nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
