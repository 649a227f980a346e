"""Global pytest configuration and fixtures."""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from jose import jwt

from apoyo.api.app import create_app
from apoyo.cache.backend import MemoryEdgeBackend
from apoyo.cache.keys import CacheKeyDeriver
from apoyo.cache.store import TieredCacheStore
from apoyo.config import Settings
from apoyo.persistence.tables import CompanyTable, ContactTable

TEST_SECRET = "test-secret-with-enough-entropy"

TokenFactory = Callable[..., str]


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_backend(clock: FakeClock) -> MemoryEdgeBackend:
    return MemoryEdgeBackend(clock=clock)


@pytest.fixture
def store(memory_backend: MemoryEdgeBackend, clock: FakeClock) -> TieredCacheStore:
    return TieredCacheStore(memory_backend, timeout=0.5, clock=clock)


@pytest.fixture
def deriver() -> CacheKeyDeriver:
    return CacheKeyDeriver(prefix="test:edge")


@pytest.fixture
def make_token() -> TokenFactory:
    """Encode HS256 tokens the way the login service does."""

    def _make(secret: str = TEST_SECRET, expires_in: int = 3600, **claims: Any) -> str:
        payload = {"exp": int(time.time()) + expires_in, **claims}
        return jwt.encode(payload, secret, algorithm="HS256")

    return _make


# =============================================================================
# Application
# =============================================================================


@pytest.fixture
def app_settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'apoyo.db'}",
        cache_backend="memory",
        jwt_secret=TEST_SECRET,
        schema_version="auto",
        enable_metrics=False,
        cors_allow_origins=["https://app.example.com"],
    )


@pytest.fixture
def app(app_settings: Settings) -> FastAPI:
    return create_app(app_settings)


async def _seed(app: FastAPI) -> None:
    async with app.state.db.session_context() as session:
        session.add_all(
            [
                CompanyTable(id=1, name="Acme", slug="acme", color="#ff0000"),
                CompanyTable(id=2, name="Globex", slug="globex"),
            ]
        )
        await session.flush()
        session.add_all(
            [
                ContactTable(
                    id=1,
                    company_id=1,
                    name="Jane Doe",
                    position="CTO",
                    email="jane@acme.test",
                    phone="+1 555 0100",
                    whatsapp="+1 555 0100",
                    city="Lima",
                ),
                ContactTable(
                    id=2,
                    company_id=2,
                    name="John Smith",
                    position="Recruiter",
                    email="john@globex.test",
                    phone="+1 555 0200",
                    city="Cusco",
                ),
            ]
        )

    ledger_store = app.state.ledger_store
    await ledger_store.create_account("u1", 5)
    await ledger_store.create_account("broke", 0)


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """HTTP client against a started application with seeded data."""
    async with app.router.lifespan_context(app):
        await _seed(app)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            yield http


@pytest.fixture
def auth(make_token: TokenFactory) -> Callable[..., dict[str, str]]:
    """Authorization headers for a role."""

    def _headers(user_id: str = "u1", role: str = "user", **claims: Any) -> dict[str, str]:
        token = make_token(id=user_id, role=role, **claims)
        return {"Authorization": f"Bearer {token}"}

    return _headers
