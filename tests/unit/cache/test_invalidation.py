"""Tests for cache invalidation by key reconstruction."""

from __future__ import annotations

from collections.abc import Sequence

from apoyo.cache.backend import MemoryEdgeBackend
from apoyo.cache.invalidation import (
    FANOUT,
    EntityKind,
    InvalidationCoordinator,
    KeyTemplate,
)
from apoyo.cache.keys import CacheKeyDeriver, ScopeContext
from apoyo.cache.policy import CacheTier, policy_for
from apoyo.cache.store import TieredCacheStore
from apoyo.security.roles import Role

LISTING = policy_for(CacheTier.PUBLIC_LISTING)


class FailingDeleteBackend(MemoryEdgeBackend):
    async def delete_many(self, keys: Sequence[str]) -> int:
        raise ConnectionError("connection reset")


class TestKeyTemplate:
    """Test template rendering."""

    def test_placeholders(self) -> None:
        template = KeyTemplate("/api/jobs/{id}", (("company_id", "{company_id}"),))
        assert template.placeholders == {"id", "company_id"}

    def test_render(self) -> None:
        template = KeyTemplate("/api/jobs/{id}", (("company_id", "{company_id}"),))
        path, query = template.render({"id": "7", "company_id": "3"})
        assert path == "/api/jobs/7"
        assert query == [("company_id", "3")]

    def test_admin_collections_are_tenant_scoped(self) -> None:
        """Admin list templates are keyed per tenant; admin detail templates are not."""
        contact_templates = {str(t): t for t in FANOUT[EntityKind.CONTACT]}
        assert contact_templates["/api/admin/contacts"].tenant_scoped
        assert not contact_templates["/api/admin/contacts/{id}"].tenant_scoped


class TestInvalidationCoordinator:
    """Test fan-out and deletion."""

    async def test_child_job_invalidates_parent_views(
        self, store: TieredCacheStore, deriver: CacheKeyDeriver
    ) -> None:
        """Changing a child job evicts the cached parent job detail."""
        coordinator = InvalidationCoordinator(store, deriver)
        parent_key = deriver.derive("/api/jobs/5", None, ScopeContext(Role.ANONYMOUS))
        other_key = deriver.derive("/api/jobs/6", None, ScopeContext(Role.ANONYMOUS))
        await store.put(parent_key, b"parent", 200, [], LISTING)
        await store.put(other_key, b"other", 200, [], LISTING)

        report = await coordinator.invalidate(
            EntityKind.CHILD_JOB, 17, {"parent_job_id": 5}
        )

        assert report.ok
        assert parent_key in report.keys
        assert await store.get(parent_key) is None
        assert await store.get(other_key) is not None

    async def test_company_admin_views_reached_through_hint(
        self, store: TieredCacheStore, deriver: CacheKeyDeriver
    ) -> None:
        """The tenant hint rebuilds the company_admin variant of admin lists."""
        coordinator = InvalidationCoordinator(store, deriver)
        admin_key = deriver.derive(
            "/api/admin/child-jobs",
            None,
            ScopeContext(Role.COMPANY_ADMIN, tenant_id="3"),
            tenant_scoped=True,
        )
        await store.put(admin_key, b"list", 200, [], LISTING)

        await coordinator.invalidate(
            EntityKind.CHILD_JOB, 17, {"parent_job_id": 5, "company_id": 3}
        )

        assert await store.get(admin_key) is None

    async def test_actor_tenant_is_used(
        self, store: TieredCacheStore, deriver: CacheKeyDeriver
    ) -> None:
        """The acting admin's own tenant is covered without a hint."""
        coordinator = InvalidationCoordinator(store, deriver)
        actor = ScopeContext(Role.COMPANY_ADMIN, tenant_id="4", user_id="a1")
        admin_key = deriver.derive("/api/admin/users", None, actor, tenant_scoped=True)
        await store.put(admin_key, b"users", 200, [], LISTING)

        await coordinator.invalidate(EntityKind.USER, "u9", actor_scope=actor)

        assert await store.get(admin_key) is None

    def test_templates_without_hints_are_skipped(
        self, store: TieredCacheStore, deriver: CacheKeyDeriver
    ) -> None:
        """Missing placeholders skip a template instead of guessing."""
        coordinator = InvalidationCoordinator(store, deriver)
        keys, skipped = coordinator.keys_for(EntityKind.CHILD_JOB, 17)

        assert "/api/jobs/{parent_job_id}" in skipped
        assert "/api/admin/child-jobs?company_id={company_id}" in skipped
        assert keys

    def test_per_user_templates_need_user(
        self, store: TieredCacheStore, deriver: CacheKeyDeriver
    ) -> None:
        coordinator = InvalidationCoordinator(store, deriver)
        _, skipped = coordinator.keys_for(EntityKind.CONTACT_UNLOCK, 1)
        assert "/api/contacts/unlocked" in skipped

        keys, _ = coordinator.keys_for(EntityKind.CONTACT_UNLOCK, 1, {"user_id": "u1"})
        expected = deriver.derive(
            "/api/contacts/status",
            {"contactId": "1"},
            ScopeContext(Role.USER, user_id="u1"),
            per_user=True,
        )
        assert expected in keys

    def test_keys_are_unique(self, store: TieredCacheStore, deriver: CacheKeyDeriver) -> None:
        coordinator = InvalidationCoordinator(store, deriver)
        keys, _ = coordinator.keys_for(EntityKind.JOB, 1, {"company_id": 2})
        assert len(keys) == len(set(keys))

    async def test_backend_failure_is_reported_not_raised(
        self, clock, deriver: CacheKeyDeriver
    ) -> None:
        """Invalidation never fails the mutation that triggered it."""
        broken = TieredCacheStore(FailingDeleteBackend(clock=clock), clock=clock)
        coordinator = InvalidationCoordinator(broken, deriver)

        report = await coordinator.invalidate(EntityKind.COMPANY, 3)

        assert not report.ok
        assert report.deleted == 0
        assert report.failures[0].kind is EntityKind.COMPANY

    async def test_unknown_kind_has_no_keys(
        self, store: TieredCacheStore, deriver: CacheKeyDeriver
    ) -> None:
        coordinator = InvalidationCoordinator(store, deriver, fanout={})
        report = await coordinator.invalidate(EntityKind.JOB, 1)
        assert report.keys == []
        assert report.ok
