"""Edge cache layer for the Apoyo API.

Provides a shared response cache that is safe across tenants and roles:
- Scope-safe key derivation (role, tenant and user folded into the key)
- Tiered HTTP caching policies with ETags and stale-while-revalidate windows
- Fail-open store over Redis (or memory for development)
- Invalidation by explicit key reconstruction from a fan-out table
"""

from apoyo.cache.backend import (
    EdgeBackend,
    MemoryEdgeBackend,
    RedisEdgeBackend,
    create_redis_client,
)
from apoyo.cache.errors import CacheError, CacheUnavailable, InvalidScope
from apoyo.cache.invalidation import (
    FANOUT,
    EntityKind,
    InvalidationCoordinator,
    InvalidationPartialFailure,
    InvalidationReport,
    KeyTemplate,
)
from apoyo.cache.keys import ALL_TENANTS, CacheKeyDeriver, ScopeContext
from apoyo.cache.policy import POLICY_TIERS, CachePolicy, CacheTier, policy_for
from apoyo.cache.store import CacheEntry, TieredCacheStore

__all__ = [
    # Keys
    "ALL_TENANTS",
    "CacheKeyDeriver",
    "ScopeContext",
    # Policies
    "CachePolicy",
    "CacheTier",
    "POLICY_TIERS",
    "policy_for",
    # Store
    "CacheEntry",
    "TieredCacheStore",
    "EdgeBackend",
    "MemoryEdgeBackend",
    "RedisEdgeBackend",
    "create_redis_client",
    # Invalidation
    "EntityKind",
    "FANOUT",
    "KeyTemplate",
    "InvalidationCoordinator",
    "InvalidationReport",
    "InvalidationPartialFailure",
    # Errors
    "CacheError",
    "CacheUnavailable",
    "InvalidScope",
]
