"""Public company lookups."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from apoyo.api.deps import cached_read, get_session, json_response
from apoyo.cache.policy import CacheTier
from apoyo.persistence.repositories import CompanyRepository
from apoyo.security.auth import Claims
from apoyo.security.deps import get_claims

router = APIRouter(prefix="/api/companies", tags=["companies"])


@router.get("/slugs")
async def company_slugs(
    request: Request,
    claims: Annotated[Claims, Depends(get_claims)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> Response:
    """Company ids, names and slugs for routing."""

    async def produce() -> Response:
        companies = await CompanyRepository(session).list_slugs()
        return json_response({"success": True, "data": companies})

    return await cached_read(request, claims, CacheTier.PUBLIC_STATIC, produce)
