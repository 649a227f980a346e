"""FastAPI security dependencies for the Apoyo API.

Provides injectable dependencies for authentication and authorization:
- get_claims: Verify the request, anonymous when there is no token
- require_user: Require an authenticated user
- require_admin: Require company_admin or super_admin

Usage:
    @router.get("/contacts")
    async def list_contacts(claims: Claims = Depends(require_user)):
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from apoyo.cache.keys import ScopeContext
from apoyo.observability.logging import tenant_id_var, user_id_var
from apoyo.security.auth import AuthVerifier, Claims
from apoyo.security.roles import is_admin


def get_verifier(request: Request) -> AuthVerifier:
    """The verifier built in the application lifespan."""
    return request.app.state.auth_verifier


async def get_claims(
    request: Request,
    verifier: Annotated[AuthVerifier, Depends(get_verifier)],
) -> Claims:
    """Verify the request.

    Returns anonymous claims when no token is sent. Raises 401 if a token is
    sent and is invalid.
    """
    result = await verifier.verify(request)
    if not result.valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=result.error or "Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    claims = result.claims
    request.state.claims = claims
    if claims.user_id:
        user_id_var.set(claims.user_id)
    if claims.tenant_id:
        tenant_id_var.set(claims.tenant_id)
    return claims


async def require_user(
    claims: Annotated[Claims, Depends(get_claims)],
) -> Claims:
    """Require an authenticated requester.

    Raises 401 if anonymous.
    """
    if claims.is_anonymous:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims


async def require_admin(
    claims: Annotated[Claims, Depends(require_user)],
) -> Claims:
    """Require an admin role.

    Raises 403 if the requester is not company_admin or super_admin.
    """
    if not is_admin(claims.role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return claims


def scope_for(claims: Claims) -> ScopeContext:
    """Cache scope of a requester."""
    return ScopeContext(role=claims.role, tenant_id=claims.tenant_id, user_id=claims.user_id)
