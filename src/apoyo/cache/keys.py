"""Cache key derivation for the edge cache.

Key format: {prefix}:{path}?{query}|role={role}|tenant={tenant}[|user={user_id}]

Where:
- prefix: "apoyo:edge" (namespace in the shared Redis)
- path: percent-encoded request path
- query: query parameters sorted by (name, value) and urlencoded
  (a single parameter equal to its default, e.g. page=1, is dropped)
- role: effective role of the requester
- tenant: company id when the view is tenant-filtered, else "all"
- user_id: only for per-user views (resources gated by unlock state)

The edge cache does not vary on headers, so everything that changes the
authorized body must be in the key string. ``|`` never survives encoding of
the path or query, so a query parameter cannot forge a scope segment.
"""

from __future__ import annotations

import hashlib
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlencode

from starlette.requests import Request

from apoyo.cache.errors import InvalidScope
from apoyo.security.roles import Role

ALL_TENANTS = "all"

QueryInput = Mapping[str, Any] | Iterable[tuple[str, Any]] | None

# Paging defaults of every list endpoint; an explicit default and an absent
# parameter produce the same body
DEFAULT_QUERY: Mapping[str, str] = {"page": "1", "limit": "20"}


@dataclass(frozen=True)
class ScopeContext:
    """Authorization scope folded into every cache key.

    Attributes:
        role: Effective role of the requester
        tenant_id: Company id when the requester's view is tenant-filtered
        user_id: Requesting user, required only for per-user views
    """

    role: Role
    tenant_id: str | None = None
    user_id: str | None = None


def _query_pairs(query_params: QueryInput) -> list[tuple[str, str]]:
    """Flatten query parameters into (name, value) string pairs."""
    if query_params is None:
        return []
    multi_items = getattr(query_params, "multi_items", None)
    if callable(multi_items):
        items: Iterable[tuple[str, Any]] = multi_items()
    elif isinstance(query_params, Mapping):
        items = query_params.items()
    else:
        items = query_params

    pairs: list[tuple[str, str]] = []
    for name, value in items:
        if isinstance(value, (list, tuple)):
            pairs.extend((str(name), str(v)) for v in value)
        elif value is not None:
            pairs.append((str(name), str(value)))
    return pairs


class CacheKeyDeriver:
    """Builds canonical, scope-safe cache keys.

    Two requests that could receive different authorized bodies never share
    a key. When the scope is incomplete the deriver raises ``InvalidScope``
    instead of producing an ambiguous key.
    """

    def __init__(
        self,
        prefix: str = "apoyo:edge",
        max_length: int = 512,
        query_defaults: Mapping[str, str] = DEFAULT_QUERY,
    ):
        self.prefix = prefix
        self.max_length = max_length
        self.query_defaults = dict(query_defaults)

    def derive(
        self,
        path: str,
        query_params: QueryInput,
        scope: ScopeContext,
        *,
        tenant_scoped: bool = False,
        per_user: bool = False,
    ) -> str:
        """Derive the cache key for a read.

        Args:
            path: Request path, e.g. "/api/admin/contacts"
            query_params: Query parameters in any order
            scope: Role/tenant/user of the requester
            tenant_scoped: Route returns a tenant-filtered view
            per_user: Route body depends on the individual user

        Raises:
            InvalidScope: If the scope cannot safely identify the view
        """
        tenant = self._resolve_tenant(scope, tenant_scoped)

        query = urlencode(sorted(self._canonical_pairs(query_params)))
        key = (
            f"{self.prefix}:{quote(path, safe='/')}?{query}"
            f"|role={scope.role.value}|tenant={quote(tenant, safe='')}"
        )

        if per_user:
            if not scope.user_id:
                raise InvalidScope(f"Per-user route {path} requires a user id")
            key = f"{key}|user={quote(scope.user_id, safe='')}"

        return self.hash_key(key)

    def derive_for_request(
        self,
        request: Request,
        scope: ScopeContext,
        *,
        tenant_scoped: bool = False,
        per_user: bool = False,
    ) -> str:
        """Derive the key for an incoming request."""
        return self.derive(
            request.url.path,
            request.query_params,
            scope,
            tenant_scoped=tenant_scoped,
            per_user=per_user,
        )

    def _canonical_pairs(self, query_params: QueryInput) -> list[tuple[str, str]]:
        """Drop single-valued parameters that equal their default."""
        pairs = _query_pairs(query_params)
        counts = Counter(name for name, _ in pairs)
        return [
            (name, value)
            for name, value in pairs
            if not (counts[name] == 1 and self.query_defaults.get(name) == value)
        ]

    def _resolve_tenant(self, scope: ScopeContext, tenant_scoped: bool) -> str:
        """Return the tenant marker for a scope, failing closed."""
        if not isinstance(scope.role, Role):
            raise InvalidScope(f"Unknown role: {scope.role!r}")

        if scope.role is Role.SUPER_ADMIN:
            return ALL_TENANTS

        if scope.role is Role.COMPANY_ADMIN:
            if not scope.tenant_id:
                raise InvalidScope("company_admin scope has no tenant")
            return scope.tenant_id

        if tenant_scoped:
            if not scope.tenant_id:
                raise InvalidScope(f"Tenant-scoped route for role {scope.role.value} has no tenant")
            return scope.tenant_id

        return ALL_TENANTS

    def hash_key(self, key: str) -> str:
        """Shorten keys longer than ``max_length``.

        Keeps a readable prefix for debugging and appends a SHA-256 digest of
        the full key.
        """
        if len(key) <= self.max_length:
            return key

        digest = hashlib.sha256(key.encode()).hexdigest()
        keep = max(self.max_length - len(digest) - 1, 0)
        return f"{key[:keep]}#{digest}"
