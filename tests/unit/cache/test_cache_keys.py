"""Tests for cache key derivation."""

from __future__ import annotations

import pytest

from apoyo.cache.errors import InvalidScope
from apoyo.cache.keys import CacheKeyDeriver, ScopeContext
from apoyo.security.roles import Role


class TestCacheKeyDeriver:
    """Test canonical, scope-safe keys."""

    def test_key_format(self, deriver: CacheKeyDeriver) -> None:
        """Key contains path, query, role and tenant."""
        key = deriver.derive("/api/jobs", {"page": "2"}, ScopeContext(Role.ANONYMOUS))
        assert key == "test:edge:/api/jobs?page=2|role=anonymous|tenant=all"

    def test_default_paging_is_canonical(self, deriver: CacheKeyDeriver) -> None:
        """Explicit default paging shares the key of the bare path."""
        scope = ScopeContext(Role.USER, user_id="u1")
        bare = deriver.derive("/api/contacts", None, scope, per_user=True)
        explicit = deriver.derive(
            "/api/contacts", {"page": "1", "limit": "20"}, scope, per_user=True
        )
        second_page = deriver.derive("/api/contacts", {"page": "2"}, scope, per_user=True)
        repeated = deriver.derive("/api/contacts", [("page", "1"), ("page", "2")], scope)

        assert explicit == bare
        assert second_page != bare
        assert "page=1" in repeated

    def test_query_order_does_not_matter(self, deriver: CacheKeyDeriver) -> None:
        """Same parameters in any order give the same key."""
        scope = ScopeContext(Role.USER, user_id="u1")
        first = deriver.derive("/api/jobs", [("b", "2"), ("a", "1")], scope)
        second = deriver.derive("/api/jobs", {"a": "1", "b": "2"}, scope)
        assert first == second

    def test_repeated_query_values_are_sorted(self, deriver: CacheKeyDeriver) -> None:
        """Multi-valued parameters are canonical too."""
        scope = ScopeContext(Role.ANONYMOUS)
        first = deriver.derive("/api/jobs", [("tag", "z"), ("tag", "a")], scope)
        second = deriver.derive("/api/jobs", {"tag": ["a", "z"]}, scope)
        assert first == second

    def test_roles_never_share_keys(self, deriver: CacheKeyDeriver) -> None:
        """Different roles get different keys for the same path."""
        keys = {
            deriver.derive("/api/jobs", None, ScopeContext(Role.ANONYMOUS)),
            deriver.derive("/api/jobs", None, ScopeContext(Role.USER, user_id="u1")),
            deriver.derive("/api/jobs", None, ScopeContext(Role.SUPER_ADMIN)),
            deriver.derive("/api/jobs", None, ScopeContext(Role.COMPANY_ADMIN, tenant_id="1")),
        }
        assert len(keys) == 4

    def test_company_admins_of_different_tenants_differ(self, deriver: CacheKeyDeriver) -> None:
        """Tenant is part of every company_admin key."""
        one = deriver.derive("/api/admin/jobs", None, ScopeContext(Role.COMPANY_ADMIN, "1"))
        two = deriver.derive("/api/admin/jobs", None, ScopeContext(Role.COMPANY_ADMIN, "2"))
        assert one != two
        assert one.endswith("|tenant=1")

    def test_company_admin_without_tenant_fails_closed(self, deriver: CacheKeyDeriver) -> None:
        """A company_admin scope without a tenant cannot be keyed."""
        with pytest.raises(InvalidScope):
            deriver.derive("/api/admin/jobs", None, ScopeContext(Role.COMPANY_ADMIN))

    def test_tenant_scoped_user_needs_tenant(self, deriver: CacheKeyDeriver) -> None:
        """Tenant-scoped views require a tenant for non-super roles."""
        with pytest.raises(InvalidScope):
            deriver.derive(
                "/api/admin/contacts",
                None,
                ScopeContext(Role.USER, user_id="u1"),
                tenant_scoped=True,
            )

    def test_super_admin_sees_all_tenants(self, deriver: CacheKeyDeriver) -> None:
        """super_admin keys are tenant-independent."""
        key = deriver.derive(
            "/api/admin/contacts",
            None,
            ScopeContext(Role.SUPER_ADMIN, tenant_id="9"),
            tenant_scoped=True,
        )
        assert key.endswith("|tenant=all")

    def test_per_user_key_includes_user(self, deriver: CacheKeyDeriver) -> None:
        """Per-user views are keyed by user."""
        one = deriver.derive(
            "/api/contacts", None, ScopeContext(Role.USER, user_id="u1"), per_user=True
        )
        two = deriver.derive(
            "/api/contacts", None, ScopeContext(Role.USER, user_id="u2"), per_user=True
        )
        assert one != two
        assert one.endswith("|user=u1")

    def test_per_user_without_user_fails_closed(self, deriver: CacheKeyDeriver) -> None:
        """A per-user view for an anonymous scope cannot be keyed."""
        with pytest.raises(InvalidScope):
            deriver.derive("/api/contacts", None, ScopeContext(Role.ANONYMOUS), per_user=True)

    def test_query_cannot_forge_scope(self, deriver: CacheKeyDeriver) -> None:
        """Separator characters in the query are encoded."""
        forged = deriver.derive(
            "/api/jobs", {"q": "x|role=super_admin"}, ScopeContext(Role.ANONYMOUS)
        )
        assert forged.count("|role=") == 1
        assert forged.endswith("|role=anonymous|tenant=all")

    def test_long_keys_are_hashed(self) -> None:
        """Keys beyond max_length keep a prefix and a digest."""
        deriver = CacheKeyDeriver(prefix="test:edge", max_length=120)
        key = deriver.derive("/api/jobs", {"q": "x" * 500}, ScopeContext(Role.ANONYMOUS))
        assert len(key) == 120
        assert key.startswith("test:edge:/api/jobs?")
        assert "#" in key

    def test_hashed_keys_stay_distinct(self) -> None:
        """Two long keys that share a prefix do not collide."""
        deriver = CacheKeyDeriver(prefix="test:edge", max_length=120)
        scope = ScopeContext(Role.ANONYMOUS)
        one = deriver.derive("/api/jobs", {"q": "x" * 500 + "1"}, scope)
        two = deriver.derive("/api/jobs", {"q": "x" * 500 + "2"}, scope)
        assert one != two
