"""Shared FastAPI dependencies and utilities for Apoyo routers.

Provides access to the components built in the lifespan and the read-through
cache helper every cached endpoint uses:
- component getters (cache store, key deriver, invalidator, ledger, gate, db)
- cached_read: derive key, serve HIT, otherwise produce and store
- pagination parameters
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Query, Request
from fastapi.responses import ORJSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from apoyo.cache.errors import InvalidScope
from apoyo.cache.invalidation import InvalidationCoordinator
from apoyo.cache.keys import CacheKeyDeriver
from apoyo.cache.policy import CacheTier, policy_for
from apoyo.cache.store import TieredCacheStore
from apoyo.gate.access import AccessGate
from apoyo.ledger.ledger import CreditLedger
from apoyo.persistence.db import Database
from apoyo.persistence.schema import ChipTemplateSource
from apoyo.security.auth import Claims
from apoyo.security.deps import scope_for

logger = logging.getLogger(__name__)

# =============================================================================
# Components
# =============================================================================


def get_cache_store(request: Request) -> TieredCacheStore:
    return request.app.state.cache_store


def get_key_deriver(request: Request) -> CacheKeyDeriver:
    return request.app.state.key_deriver


def get_invalidator(request: Request) -> InvalidationCoordinator:
    return request.app.state.invalidator


def get_ledger(request: Request) -> CreditLedger:
    return request.app.state.ledger


def get_gate(request: Request) -> AccessGate:
    return request.app.state.gate


def get_chip_source(request: Request) -> ChipTemplateSource:
    return request.app.state.chip_source


def get_database(request: Request) -> Database:
    return request.app.state.db


async def get_session(
    db: Annotated[Database, Depends(get_database)],
) -> AsyncGenerator[AsyncSession, None]:
    """Provide a session for the request."""
    async for session in db.session():
        yield session


# =============================================================================
# Pagination
# =============================================================================


@dataclass(frozen=True)
class Page:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def meta(self, total: int) -> dict[str, int]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": total,
            "totalPages": (total + self.limit - 1) // self.limit,
        }


def page_params(
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> Page:
    return Page(page=page, limit=limit)


# =============================================================================
# Read-through cache
# =============================================================================


def json_response(content: object, status_code: int = 200) -> ORJSONResponse:
    return ORJSONResponse(content=content, status_code=status_code)


async def cached_read(
    request: Request,
    claims: Claims,
    tier: CacheTier,
    produce: Callable[[], Awaitable[Response]],
) -> Response:
    """Serve a read from the edge cache, or produce and store it.

    The key folds in the requester's scope. When the scope cannot identify
    the view safely, the response is produced uncached.
    """
    policy = policy_for(tier)
    store: TieredCacheStore = request.app.state.cache_store
    deriver: CacheKeyDeriver = request.app.state.key_deriver

    if not policy.enabled:
        return await store.put_response("", await produce(), policy)

    try:
        key = deriver.derive_for_request(
            request,
            scope_for(claims),
            tenant_scoped=policy.tenant_scoped,
            per_user=policy.per_user,
        )
    except InvalidScope as e:
        logger.warning(f"Not caching {request.url.path}: {e}")
        response = await produce()
        response.headers["Cache-Control"] = "no-store"
        return response

    cached = await store.get_response(key, request)
    if cached is not None:
        return cached

    response = await produce()
    return await store.put_response(key, response, policy, method=request.method)
