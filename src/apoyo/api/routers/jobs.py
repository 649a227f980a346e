"""Job chip lookups.

Chips are read through the chip source selected at startup, so the same
endpoint serves databases on either chip schema generation.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from apoyo.api.deps import cached_read, get_chip_source, get_session, json_response
from apoyo.cache.policy import CacheTier
from apoyo.persistence.schema import ChipTemplateSource
from apoyo.security.auth import Claims
from apoyo.security.deps import get_claims

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("/{job_id}/chips")
async def job_chips(
    request: Request,
    job_id: int,
    claims: Annotated[Claims, Depends(get_claims)],
    session: Annotated[AsyncSession, Depends(get_session)],
    source: Annotated[ChipTemplateSource, Depends(get_chip_source)],
) -> Response:
    """Chips attached to a job, in display order."""

    async def produce() -> Response:
        chips = (await source.chips_for_jobs(session, [job_id])).get(job_id, [])
        return json_response({"success": True, "data": [asdict(chip) for chip in chips]})

    return await cached_read(request, claims, CacheTier.PUBLIC_LISTING, produce)
