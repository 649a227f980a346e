"""Per-endpoint cache policies, grouped into tiers by data volatility.

Every read endpoint names a tier. ``NO_CACHE`` is an explicit decision,
not an omission; responses under it still advertise ``no-store``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class CachePolicy:
    """Caching parameters for one class of responses.

    Attributes:
        max_age: Browser freshness in seconds
        s_max_age: Shared (edge) cache freshness in seconds
        stale_while_revalidate: Window after freshness advertised to downstream caches
        public: Whether shared caches may store the response
        enabled: False marks an endpoint that must never be cached
        tenant_scoped: Body is filtered to the requester's company
        per_user: Body depends on the individual user (unlock state)
    """

    max_age: int = 0
    s_max_age: int = 0
    stale_while_revalidate: int = 0
    public: bool = False
    enabled: bool = True
    tenant_scoped: bool = False
    per_user: bool = False

    def __post_init__(self) -> None:
        if min(self.max_age, self.s_max_age, self.stale_while_revalidate) < 0:
            raise ValueError("Cache durations must be non-negative")
        if self.public and self.per_user:
            raise ValueError("Per-user responses cannot be publicly cacheable")

    @property
    def freshness(self) -> int:
        """Seconds an entry stays fresh in the edge cache."""
        return self.s_max_age or self.max_age

    def cache_control(self) -> str:
        """Build the Cache-Control header value."""
        if not self.enabled:
            return "no-store"

        parts = ["public" if self.public else "private"]
        if self.max_age:
            parts.append(f"max-age={self.max_age}")
        if self.s_max_age:
            parts.append(f"s-maxage={self.s_max_age}")
        if self.stale_while_revalidate:
            parts.append(f"stale-while-revalidate={self.stale_while_revalidate}")
        return ", ".join(parts)


class CacheTier(str, Enum):
    """Named policy tiers."""

    PUBLIC_STATIC = "public_static"  # tenant slugs and similar lookups
    PUBLIC_LISTING = "public_listing"  # public job listings
    TENANT_ADMIN_LIST = "tenant_admin_list"  # company-admin lists
    ADMIN_REFERENCE = "admin_reference"  # templates, taxonomies
    USER_PRIVATE = "user_private"  # reads masked by per-user unlock state
    NO_CACHE = "no_cache"


POLICY_TIERS: dict[CacheTier, CachePolicy] = {
    CacheTier.PUBLIC_STATIC: CachePolicy(
        max_age=1800, s_max_age=7200, stale_while_revalidate=14400, public=True
    ),
    CacheTier.PUBLIC_LISTING: CachePolicy(
        max_age=600, s_max_age=1800, stale_while_revalidate=3600, public=True
    ),
    CacheTier.TENANT_ADMIN_LIST: CachePolicy(
        max_age=240, s_max_age=720, stale_while_revalidate=1440, tenant_scoped=True
    ),
    CacheTier.ADMIN_REFERENCE: CachePolicy(
        max_age=600, s_max_age=3600, stale_while_revalidate=7200
    ),
    CacheTier.USER_PRIVATE: CachePolicy(
        max_age=60, s_max_age=0, stale_while_revalidate=120, per_user=True
    ),
    CacheTier.NO_CACHE: CachePolicy(enabled=False),
}


def policy_for(tier: CacheTier) -> CachePolicy:
    """Return the policy for a tier."""
    return POLICY_TIERS[tier]
