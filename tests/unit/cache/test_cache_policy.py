"""Tests for cache policy tiers."""

from __future__ import annotations

import pytest

from apoyo.cache.policy import POLICY_TIERS, CachePolicy, CacheTier, policy_for


class TestCachePolicy:
    """Test Cache-Control generation and validation."""

    def test_public_static_header(self) -> None:
        """Public tier advertises browser, edge and revalidation windows."""
        header = policy_for(CacheTier.PUBLIC_STATIC).cache_control()
        assert header == "public, max-age=1800, s-maxage=7200, stale-while-revalidate=14400"

    def test_user_private_header(self) -> None:
        """Per-user tier is private and has no shared max-age."""
        header = policy_for(CacheTier.USER_PRIVATE).cache_control()
        assert header == "private, max-age=60, stale-while-revalidate=120"

    def test_no_cache_tier(self) -> None:
        """NO_CACHE is explicit and renders no-store."""
        policy = policy_for(CacheTier.NO_CACHE)
        assert not policy.enabled
        assert policy.cache_control() == "no-store"

    def test_freshness_prefers_shared_max_age(self) -> None:
        """Edge freshness is s-maxage when set."""
        assert CachePolicy(max_age=10, s_max_age=30).freshness == 30
        assert CachePolicy(max_age=10).freshness == 10

    def test_negative_durations_rejected(self) -> None:
        """Durations must be non-negative."""
        with pytest.raises(ValueError):
            CachePolicy(max_age=-1)

    def test_public_per_user_rejected(self) -> None:
        """A per-user body can never be public."""
        with pytest.raises(ValueError):
            CachePolicy(public=True, per_user=True)

    def test_every_tier_has_a_policy(self) -> None:
        """No tier is left without a policy."""
        assert set(POLICY_TIERS) == set(CacheTier)

    def test_tenant_admin_list_is_tenant_scoped(self) -> None:
        """Admin lists are keyed per tenant."""
        policy = policy_for(CacheTier.TENANT_ADMIN_LIST)
        assert policy.tenant_scoped
        assert not policy.public
