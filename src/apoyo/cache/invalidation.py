"""Cache invalidation by explicit key reconstruction.

The edge cache has no tag-based bulk invalidation, so every mutation names
the entity it touched and the coordinator rebuilds every cache key that could
hold that entity. ``FANOUT`` is the single list of which read views join
which entity; a new read view that embeds an entity needs a template here.

Keys are rebuilt for each scope variant that could have cached the view:
anonymous, user, super_admin, company_admin for every known tenant, and the
per-user variant when the mutation names the user.

Views filtered by extra query parameters the templates do not enumerate
(paging, search) are not reached and stay stale until their TTL runs out.

Example:
    coordinator = InvalidationCoordinator(store, deriver)
    report = await coordinator.invalidate(
        EntityKind.CHILD_JOB, "17", {"parent_job_id": "5"}
    )
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from apoyo.cache.errors import CacheError, CacheUnavailable, InvalidScope
from apoyo.cache.keys import CacheKeyDeriver, ScopeContext
from apoyo.cache.store import TieredCacheStore
from apoyo.observability.metrics import record_invalidation
from apoyo.security.roles import Role

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


class EntityKind(str, Enum):
    """Kinds of mutated entities."""

    JOB = "job"
    CHILD_JOB = "child_job"
    COMPANY = "company"
    CONTACT = "contact"
    CONTACT_UNLOCK = "contact_unlock"
    CHIP = "chip"
    CHIP_TEMPLATE = "chip_template"
    AI_SNAPSHOT = "ai_snapshot"
    USER = "user"


@dataclass(frozen=True)
class KeyTemplate:
    """A read view that may contain an entity.

    ``{id}`` is the mutated entity's id; other placeholders come from the
    hints passed to ``invalidate``.
    """

    path: str
    query: tuple[tuple[str, str], ...] = ()
    per_user: bool = False
    tenant_scoped: bool = False

    @property
    def admin_only(self) -> bool:
        return self.path.startswith("/api/admin/")

    @property
    def placeholders(self) -> set[str]:
        names = set(_PLACEHOLDER.findall(self.path))
        for _, value in self.query:
            names.update(_PLACEHOLDER.findall(value))
        return names

    def render(self, values: Mapping[str, str]) -> tuple[str, list[tuple[str, str]]]:
        """Fill placeholders. Caller ensures every placeholder has a value."""

        def fill(text: str) -> str:
            return _PLACEHOLDER.sub(lambda m: values[m.group(1)], text)

        return fill(self.path), [(name, fill(value)) for name, value in self.query]

    def __str__(self) -> str:
        if not self.query:
            return self.path
        return self.path + "?" + "&".join(f"{k}={v}" for k, v in self.query)


def _t(path: str, *, per_user: bool = False, **query: str) -> KeyTemplate:
    # Admin collection views are filtered to the admin's company
    tenant_scoped = path.startswith("/api/admin/") and "{id}" not in path
    return KeyTemplate(
        path=path,
        query=tuple(sorted(query.items())),
        per_user=per_user,
        tenant_scoped=tenant_scoped,
    )


FANOUT: dict[EntityKind, tuple[KeyTemplate, ...]] = {
    EntityKind.JOB: (
        _t("/api/admin/jobs"),
        _t("/api/admin/jobs/{id}"),
        _t("/api/jobs"),
        _t("/api/jobs/{id}"),
        _t("/api/jobs/{id}/chips"),
        _t("/api/companies/slugs"),
        _t("/api/admin/jobs", company_id="{company_id}"),
    ),
    EntityKind.CHILD_JOB: (
        _t("/api/admin/child-jobs"),
        _t("/api/admin/child-jobs/{id}"),
        _t("/api/jobs/{parent_job_id}"),
        _t("/api/admin/jobs/{parent_job_id}"),
        _t("/api/admin/child-jobs", parent_job_id="{parent_job_id}"),
        _t("/api/admin/child-jobs", company_id="{company_id}"),
    ),
    EntityKind.COMPANY: (
        _t("/api/admin/companies"),
        _t("/api/companies/slugs"),
        _t("/api/admin/companies/{id}"),
        _t("/api/admin/jobs", company_id="{id}"),
        _t("/api/admin/contacts", company_id="{id}"),
        _t("/api/contacts", company_id="{id}"),
    ),
    EntityKind.CONTACT: (
        _t("/api/admin/contacts"),
        _t("/api/admin/contacts/{id}"),
        _t("/api/contacts", per_user=True),
        _t("/api/contacts/{id}", per_user=True),
        _t("/api/admin/contacts", company_id="{company_id}"),
        _t("/api/admin/companies/{company_id}"),
    ),
    EntityKind.CONTACT_UNLOCK: (
        _t("/api/contacts/status", per_user=True, contactId="{id}"),
        _t("/api/contacts/unlocked", per_user=True),
        _t("/api/contacts/{id}", per_user=True),
        _t("/api/contacts", per_user=True),
        _t("/api/admin/contacts"),
    ),
    EntityKind.CHIP: (
        _t("/api/admin/chips"),
        _t("/api/admin/chips/{id}"),
        _t("/api/chips/categories"),
        _t("/api/admin/jobs"),
    ),
    EntityKind.CHIP_TEMPLATE: (
        _t("/api/admin/chip-templates"),
        _t("/api/admin/chip-templates/{id}"),
        _t("/api/chip-templates/categories"),
        _t("/api/admin/jobs"),
    ),
    EntityKind.AI_SNAPSHOT: (
        _t("/api/admin/ai-snapshots"),
        _t("/api/admin/ai-snapshots/{id}"),
        _t("/api/jobs"),
        _t("/api/jobs/{job_id}"),
    ),
    EntityKind.USER: (
        _t("/api/admin/users"),
        _t("/api/admin/users/{id}"),
    ),
}


class InvalidationPartialFailure(CacheError):
    """Some keys of an invalidation could not be deleted.

    Recorded in the report and logged; never raised to the mutation's caller.
    """

    def __init__(self, kind: EntityKind, keys: list[str], reason: str):
        self.kind = kind
        self.keys = keys
        self.reason = reason
        super().__init__(f"Invalidation of {len(keys)} {kind.value} keys failed: {reason}")


@dataclass
class InvalidationReport:
    """Outcome of one invalidation."""

    kind: EntityKind
    entity_id: str
    keys: list[str] = field(default_factory=list)
    deleted: int = 0
    skipped: list[str] = field(default_factory=list)
    failures: list[InvalidationPartialFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class InvalidationCoordinator:
    """Deletes every cache entry a mutation could have made stale."""

    def __init__(
        self,
        store: TieredCacheStore,
        deriver: CacheKeyDeriver,
        fanout: Mapping[EntityKind, Iterable[KeyTemplate]] | None = None,
    ):
        self.store = store
        self.deriver = deriver
        self.fanout = dict(fanout if fanout is not None else FANOUT)

    def keys_for(
        self,
        kind: EntityKind | str,
        entity_id: Any,
        hints: Mapping[str, Any] | None = None,
        actor_scope: ScopeContext | None = None,
    ) -> tuple[list[str], list[str]]:
        """Reconstruct affected keys.

        Returns:
            (keys, skipped templates)
        """
        kind = EntityKind(kind)
        values = {name: str(value) for name, value in (hints or {}).items() if value is not None}
        values["id"] = str(entity_id)

        tenants = _tenants(values.get("company_id"), actor_scope)
        user_id = values.get("user_id")

        keys: list[str] = []
        skipped: list[str] = []
        for template in self.fanout.get(kind, ()):
            if not template.placeholders <= values.keys():
                skipped.append(str(template))
                continue
            if template.per_user and not user_id:
                skipped.append(str(template))
                continue

            path, query = template.render(values)
            for scope in _scope_variants(template, tenants, user_id):
                try:
                    key = self.deriver.derive(
                        path,
                        query,
                        scope,
                        tenant_scoped=template.tenant_scoped,
                        per_user=template.per_user,
                    )
                except InvalidScope:
                    # This scope can never have cached the view
                    continue
                if key not in keys:
                    keys.append(key)

        return keys, skipped

    async def invalidate(
        self,
        kind: EntityKind | str,
        entity_id: Any,
        hints: Mapping[str, Any] | None = None,
        actor_scope: ScopeContext | None = None,
    ) -> InvalidationReport:
        """Delete cached views of an entity, best-effort.

        Call after a successful write and before responding. Never raises for
        cache failures; inspect the report instead.
        """
        kind = EntityKind(kind)
        keys, skipped = self.keys_for(kind, entity_id, hints, actor_scope)
        report = InvalidationReport(kind=kind, entity_id=str(entity_id), keys=keys, skipped=skipped)

        if keys:
            try:
                report.deleted = await self.store.delete_keys(keys)
            except CacheUnavailable as e:
                failure = InvalidationPartialFailure(kind, keys, e.reason)
                report.failures.append(failure)
                logger.error(f"Invalidation of {kind.value} {entity_id} incomplete: {failure}")

        if skipped:
            logger.debug(f"Skipped {len(skipped)} {kind.value} templates without hints: {skipped}")

        record_invalidation(kind.value, report.deleted, failed=not report.ok)
        logger.debug(
            f"Invalidated {kind.value} {entity_id}: {report.deleted}/{len(keys)} entries removed"
        )
        return report


def _tenants(company_id: str | None, actor_scope: ScopeContext | None) -> list[str]:
    tenants: list[str] = []
    for tenant in (company_id, actor_scope.tenant_id if actor_scope else None):
        if tenant and tenant not in tenants:
            tenants.append(tenant)
    return tenants


def _scope_variants(
    template: KeyTemplate, tenants: list[str], user_id: str | None
) -> list[ScopeContext]:
    """Scopes whose requests could have cached this view."""
    scopes: list[ScopeContext] = []
    if not template.admin_only:
        scopes.append(ScopeContext(Role.ANONYMOUS, user_id=user_id))
        scopes.append(ScopeContext(Role.USER, user_id=user_id))
        scopes.extend(ScopeContext(Role.USER, tenant_id=t, user_id=user_id) for t in tenants)
    scopes.append(ScopeContext(Role.SUPER_ADMIN, user_id=user_id))
    scopes.extend(ScopeContext(Role.COMPANY_ADMIN, tenant_id=t, user_id=user_id) for t in tenants)
    return scopes
