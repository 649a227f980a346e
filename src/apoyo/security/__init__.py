"""Security module for the Apoyo API.

Provides authentication and authorization:
- Roles carried in tokens
- AuthVerifier protocol with an HS256 JWT implementation

FastAPI dependencies live in :mod:`apoyo.security.deps`.
"""

from apoyo.security.auth import (
    ANONYMOUS,
    AuthResult,
    AuthVerifier,
    Claims,
    InvalidTokenError,
    JwtAuthVerifier,
)
from apoyo.security.roles import ADMIN_ROLES, TENANT_BOUND_ROLES, Role, is_admin

__all__ = [
    # Roles
    "Role",
    "ADMIN_ROLES",
    "TENANT_BOUND_ROLES",
    "is_admin",
    # Verification
    "ANONYMOUS",
    "AuthResult",
    "AuthVerifier",
    "Claims",
    "InvalidTokenError",
    "JwtAuthVerifier",
]
