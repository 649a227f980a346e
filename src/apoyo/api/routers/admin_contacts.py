"""Admin contact endpoints.

company_admin requests are confined to the admin's own company; the list is
cached per tenant under the tenant-admin tier.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from apoyo.api.deps import (
    Page,
    cached_read,
    get_gate,
    get_invalidator,
    get_session,
    json_response,
    page_params,
)
from apoyo.api.errors import ForbiddenError, NotFoundError
from apoyo.cache.invalidation import EntityKind, InvalidationCoordinator
from apoyo.cache.policy import CacheTier
from apoyo.gate.access import AccessGate, UnlockState
from apoyo.persistence.repositories import ContactRepository
from apoyo.security.auth import Claims
from apoyo.security.deps import require_admin, scope_for
from apoyo.security.roles import Role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/contacts", tags=["admin"])

AdminClaims = Annotated[Claims, Depends(require_admin)]
Session = Annotated[AsyncSession, Depends(get_session)]


def _tenant_filter(claims: Claims, requested: int | None) -> int | None:
    """Company filter an admin may use."""
    if claims.role is not Role.COMPANY_ADMIN:
        return requested
    if claims.tenant_id is None or not claims.tenant_id.isdigit():
        raise ForbiddenError("Company admin has no company")
    own = int(claims.tenant_id)
    if requested is not None and requested != own:
        raise ForbiddenError("Access limited to your own company")
    return own


@router.get("")
async def admin_list_contacts(
    request: Request,
    claims: AdminClaims,
    session: Session,
    gate: Annotated[AccessGate, Depends(get_gate)],
    page: Annotated[Page, Depends(page_params)],
    search: str | None = None,
    company_id: int | None = None,
    city: str | None = None,
) -> Response:
    """List contacts for administration."""
    company_filter = _tenant_filter(claims, company_id)

    async def produce() -> Response:
        contacts, total = await ContactRepository(session).list_page(
            limit=page.limit,
            offset=page.offset,
            search=search,
            company_id=company_filter,
            city=city,
        )
        state = UnlockState(role=claims.role, tenant_id=claims.tenant_id)
        data = [gate.view(c, state) for c in contacts]
        return json_response({"success": True, "data": data, "pagination": page.meta(total)})

    return await cached_read(request, claims, CacheTier.TENANT_ADMIN_LIST, produce)


@router.delete("/{contact_id}")
async def admin_delete_contact(
    contact_id: int,
    claims: AdminClaims,
    session: Session,
    invalidator: Annotated[InvalidationCoordinator, Depends(get_invalidator)],
) -> Response:
    """Delete a contact and invalidate every cached view of it."""
    repo = ContactRepository(session)
    contact = await repo.get(contact_id)
    if contact is None:
        raise NotFoundError("Contact", contact_id)

    if claims.role is Role.COMPANY_ADMIN and str(contact["company_id"]) != claims.tenant_id:
        raise ForbiddenError("Access limited to your own company")

    await repo.delete(contact_id)
    await session.commit()
    logger.info(f"Contact {contact_id} deleted by {claims.role.value} {claims.user_id}")

    await invalidator.invalidate(
        EntityKind.CONTACT,
        contact_id,
        {"company_id": contact["company_id"]},
        actor_scope=scope_for(claims),
    )
    return json_response({"success": True, "message": "Contact deleted successfully"})
