"""Async database engine and session factory.

Provides async connectivity using the SQLAlchemy 2.0 asyncio extension:
asyncpg for PostgreSQL in production, aiosqlite for tests and local runs.

One :class:`Database` is created in the application lifespan and kept on
``app.state``; there is no module-level engine.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Collection
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import Table, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool


def create_engine(
    url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    echo: bool = False,
) -> AsyncEngine:
    """Create the async engine with pool settings suited to the backend."""
    kwargs: dict[str, Any] = {"echo": echo}
    parsed = make_url(url)

    if parsed.get_backend_name() == "sqlite":
        if parsed.database in (None, "", ":memory:"):
            # One shared connection so every session sees the same database
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=30,
            pool_recycle=1800,  # Recycle connections after 30 minutes
            pool_pre_ping=True,  # Verify connection health
        )

    return create_async_engine(url, **kwargs)


class Database:
    """Engine plus session factory with an explicit lifecycle."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "Database":
        return cls(create_engine(url, **kwargs))

    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a session for FastAPI dependency injection."""
        session = self.session_factory()
        try:
            yield session
        finally:
            await session.close()

    @asynccontextmanager
    async def session_context(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations.

        Usage:
            async with db.session_context() as session:
                await session.execute(...)
        """
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def init_schema(self, skip: Collection[Table] = ()) -> None:
        """Create tables if they do not exist, except those in ``skip``.

        For production, manage the schema with migrations instead.
        """
        from apoyo.persistence.tables import Base

        skipped = {t.name for t in skip}
        tables = [t for t in Base.metadata.sorted_tables if t.name not in skipped]
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all, tables=tables)

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.session_context() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception:
            return False

    async def close(self) -> None:
        """Close database connections."""
        await self.engine.dispose()
