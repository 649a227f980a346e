"""JWT verification for the Apoyo API.

Tokens are HS256-signed by the login service with the claims
``id``, ``email``, ``role`` and ``company_id``. Verification checks the
signature and expiry and turns the payload into :class:`Claims`.

The core only depends on the :class:`AuthVerifier` protocol; the JWT
implementation is one way to satisfy it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from starlette.requests import Request

from apoyo.security.roles import Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Claims:
    """Identity and scope of the requester."""

    user_id: str | None = None
    role: Role = Role.ANONYMOUS
    tenant_id: str | None = None
    email: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_anonymous(self) -> bool:
        return self.role is Role.ANONYMOUS or self.user_id is None


ANONYMOUS = Claims()


@dataclass(frozen=True)
class AuthResult:
    """Outcome of verifying a request."""

    valid: bool
    claims: Claims = ANONYMOUS
    error: str | None = None


class InvalidTokenError(Exception):
    """Raised when token validation fails."""

    pass


class AuthVerifier(Protocol):
    """Given a request, return {valid, claims} or reject."""

    async def verify(self, request: Request) -> AuthResult: ...


class JwtAuthVerifier:
    """Verifies HS256 bearer tokens."""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        if not secret:
            raise ValueError("JWT secret is not configured")
        self.secret = secret
        self.algorithm = algorithm

    async def verify(self, request: Request) -> AuthResult:
        """Verify the Authorization header of a request.

        No header yields a valid anonymous result; a malformed or bad token
        yields ``valid=False``.
        """
        authorization = request.headers.get("Authorization")
        if authorization is None:
            return AuthResult(valid=True, claims=ANONYMOUS)

        if not authorization.startswith("Bearer "):
            return AuthResult(valid=False, error="Invalid authorization header format")

        try:
            claims = self.decode(authorization[7:])
        except InvalidTokenError as e:
            return AuthResult(valid=False, error=str(e))
        return AuthResult(valid=True, claims=claims)

    def decode(self, token: str) -> Claims:
        """Decode and validate a token.

        Raises:
            InvalidTokenError: If the token is invalid, expired or lacks a role
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": True, "verify_aud": False},
            )
        except ExpiredSignatureError as e:
            raise InvalidTokenError("Token has expired") from e
        except JWTError as e:
            raise InvalidTokenError(f"Invalid token: {e}") from e

        return self._claims_from_payload(payload)

    def _claims_from_payload(self, payload: dict[str, Any]) -> Claims:
        user_id = payload.get("id", payload.get("sub"))
        if user_id is None:
            raise InvalidTokenError("Token has no subject")

        role = Role.parse(payload.get("role"))
        if role is None or role is Role.ANONYMOUS:
            raise InvalidTokenError(f"Unknown role: {payload.get('role')!r}")

        tenant = payload.get("company_id")
        return Claims(
            user_id=str(user_id),
            role=role,
            tenant_id=str(tenant) if tenant is not None else None,
            email=payload.get("email"),
            raw=payload,
        )
