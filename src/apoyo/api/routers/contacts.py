"""Contact endpoints for users.

Contact details are credit-gated: lists and details are masked by the
AccessGate per requesting user, so every read here is cached per user.
Unlocking spends credits through the ledger and invalidates the user's
cached contact views.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from apoyo.api.deps import (
    Page,
    cached_read,
    get_gate,
    get_invalidator,
    get_ledger,
    get_session,
    json_response,
    page_params,
)
from apoyo.api.errors import NotFoundError
from apoyo.cache.invalidation import EntityKind, InvalidationCoordinator
from apoyo.cache.policy import CacheTier
from apoyo.gate.access import AccessGate, UnlockState
from apoyo.ledger.ledger import CreditLedger
from apoyo.persistence.repositories import ContactRepository
from apoyo.security.auth import Claims
from apoyo.security.deps import require_user, scope_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contacts", tags=["contacts"])

UserClaims = Annotated[Claims, Depends(require_user)]
Session = Annotated[AsyncSession, Depends(get_session)]


class UnlockRequest(BaseModel):
    contact_id: int = Field(alias="contactId", ge=1)


def _state(claims: Claims, unlocked: bool) -> UnlockState:
    return UnlockState(unlocked=unlocked, role=claims.role, tenant_id=claims.tenant_id)


@router.get("/status")
async def contact_status(
    request: Request,
    claims: UserClaims,
    ledger: Annotated[CreditLedger, Depends(get_ledger)],
    contact_id: Annotated[int, Query(alias="contactId", ge=1)],
) -> Response:
    """Whether the user has unlocked a contact, with their credit balance."""

    async def produce() -> Response:
        status = await ledger.status(claims.user_id or "", str(contact_id))
        return json_response(
            {
                "success": True,
                "isUnlocked": status.is_unlocked,
                "userCredits": status.balance,
                "unlockedAt": status.unlocked_at.isoformat() if status.unlocked_at else None,
            }
        )

    return await cached_read(request, claims, CacheTier.USER_PRIVATE, produce)


@router.get("/unlocked")
async def unlocked_contacts(
    request: Request,
    claims: UserClaims,
    session: Session,
    page: Annotated[Page, Depends(page_params)],
) -> Response:
    """The user's unlocked contacts, newest unlock first."""

    async def produce() -> Response:
        data, total = await ContactRepository(session).list_unlocked(
            claims.user_id or "", limit=page.limit, offset=page.offset
        )
        return json_response({"success": True, "data": data, "pagination": page.meta(total)})

    return await cached_read(request, claims, CacheTier.USER_PRIVATE, produce)


@router.get("")
async def list_contacts(
    request: Request,
    claims: UserClaims,
    session: Session,
    ledger: Annotated[CreditLedger, Depends(get_ledger)],
    gate: Annotated[AccessGate, Depends(get_gate)],
    page: Annotated[Page, Depends(page_params)],
    search: str | None = None,
    company_id: int | None = None,
    city: str | None = None,
) -> Response:
    """List contacts, masked unless unlocked by the requester."""

    async def produce() -> Response:
        contacts, total = await ContactRepository(session).list_page(
            limit=page.limit,
            offset=page.offset,
            search=search,
            company_id=company_id,
            city=city,
        )
        unlocked = await ledger.unlocked_among(
            claims.user_id or "", [str(c["id"]) for c in contacts]
        )
        data = [gate.view(c, _state(claims, str(c["id"]) in unlocked)) for c in contacts]
        return json_response({"success": True, "data": data, "pagination": page.meta(total)})

    return await cached_read(request, claims, CacheTier.USER_PRIVATE, produce)


@router.get("/{contact_id}")
async def get_contact(
    request: Request,
    contact_id: int,
    claims: UserClaims,
    session: Session,
    ledger: Annotated[CreditLedger, Depends(get_ledger)],
    gate: Annotated[AccessGate, Depends(get_gate)],
) -> Response:
    """One contact, masked unless unlocked by the requester."""

    async def produce() -> Response:
        contact = await ContactRepository(session).get(contact_id)
        if contact is None:
            raise NotFoundError("Contact", contact_id)
        unlocked = await ledger.unlocked_among(claims.user_id or "", [str(contact_id)])
        view = gate.view(contact, _state(claims, str(contact_id) in unlocked))
        return json_response({"success": True, "data": view})

    return await cached_read(request, claims, CacheTier.USER_PRIVATE, produce)


@router.post("/unlock")
async def unlock_contact(
    request: Request,
    body: UnlockRequest,
    claims: UserClaims,
    session: Session,
    ledger: Annotated[CreditLedger, Depends(get_ledger)],
    invalidator: Annotated[InvalidationCoordinator, Depends(get_invalidator)],
) -> Response:
    """Spend credits to reveal a contact. Repeated unlocks never charge twice.

    Raises 404 if the contact does not exist and 402 if the balance is too low.
    """
    contact = await ContactRepository(session).get(body.contact_id)
    if contact is None:
        raise NotFoundError("Contact", body.contact_id)

    user_id = claims.user_id or ""
    cost = request.app.state.settings.unlock_cost
    result = await ledger.spend(user_id, str(body.contact_id), cost)

    if result.granted:
        await invalidator.invalidate(
            EntityKind.CONTACT_UNLOCK,
            body.contact_id,
            {"user_id": user_id, "company_id": contact["company_id"]},
            actor_scope=scope_for(claims),
        )

    return json_response(
        {
            "success": True,
            "alreadyUnlocked": result.already_unlocked,
            "message": "Contact already unlocked"
            if result.already_unlocked
            else "Contact unlocked successfully",
            "contact": {**contact, "isUnlocked": True},
            "creditsRemaining": result.remaining_balance,
        }
    )
