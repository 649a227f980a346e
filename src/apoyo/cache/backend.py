"""Edge key/value backends for the tiered cache store.

Each cache entry occupies two keys, a metadata envelope and the raw body,
written together and expiring together. Backends only move bytes; entry
semantics live in :mod:`apoyo.cache.store`.

Backends:
- RedisEdgeBackend: redis-py async client with connection pooling
- MemoryEdgeBackend: process-local dict for development and tests
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Protocol, cast

import redis.asyncio as redis

if TYPE_CHECKING:
    from redis.asyncio import Redis

# Redis DEL accepts many keys; batch to keep commands bounded
DELETE_BATCH_SIZE = 500


class EdgeBackend(Protocol):
    """Minimal key/value operations the cache store needs."""

    name: str

    async def get_pair(self, meta_key: str, body_key: str) -> tuple[bytes | None, bytes | None]: ...

    async def set_pair(
        self, meta_key: str, body_key: str, meta: bytes, body: bytes, ttl_ms: int
    ) -> None: ...

    async def delete_many(self, keys: Sequence[str]) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


def create_redis_client(url: str) -> Redis:
    """Create a Redis client with its own connection pool.

    The caller owns the client and closes it at shutdown.
    """
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        decode_responses=False,  # We're storing bytes
    )


class RedisEdgeBackend:
    """Redis-backed edge cache storage."""

    name = "redis"

    def __init__(self, client: Redis):
        self.client = client

    async def get_pair(self, meta_key: str, body_key: str) -> tuple[bytes | None, bytes | None]:
        """Get metadata and body using a single pipeline round trip."""
        async with self.client.pipeline(transaction=False) as pipe:
            pipe.get(meta_key)
            pipe.get(body_key)
            meta, body = await pipe.execute()
        return meta, body

    async def set_pair(
        self, meta_key: str, body_key: str, meta: bytes, body: bytes, ttl_ms: int
    ) -> None:
        """Store metadata and body with the same expiry.

        MULTI/EXEC keeps a reader from seeing a new body with old metadata.
        """
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.set(body_key, body, px=ttl_ms)
            pipe.set(meta_key, meta, px=ttl_ms)
            await pipe.execute()

    async def delete_many(self, keys: Sequence[str]) -> int:
        """Delete keys in batches. Missing keys are not an error."""
        deleted = 0
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start : start + DELETE_BATCH_SIZE]
            deleted += cast(int, await self.client.delete(*batch))
        return deleted

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        return bool(await cast(Awaitable[bool], self.client.ping()))

    async def close(self) -> None:
        """Close Redis connections."""
        await self.client.aclose()


class MemoryEdgeBackend:
    """In-process backend with the same expiry semantics as Redis.

    Every call yields to the event loop once, so concurrent callers
    interleave the way they would against a networked store. Expired keys
    are dropped when read and swept every ``sweep_every`` writes.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.time, sweep_every: int = 100):
        self.clock = clock
        self.sweep_every = max(sweep_every, 1)
        self._data: dict[str, tuple[bytes, float]] = {}
        self._writes = 0

    def _get(self, key: str) -> bytes | None:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self.clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get_pair(self, meta_key: str, body_key: str) -> tuple[bytes | None, bytes | None]:
        await asyncio.sleep(0)
        return self._get(meta_key), self._get(body_key)

    async def set_pair(
        self, meta_key: str, body_key: str, meta: bytes, body: bytes, ttl_ms: int
    ) -> None:
        await asyncio.sleep(0)
        expires_at = self.clock() + ttl_ms / 1000
        self._data[body_key] = (body, expires_at)
        self._data[meta_key] = (meta, expires_at)
        self._writes += 1
        if self._writes % self.sweep_every == 0:
            self.sweep()

    def sweep(self) -> int:
        """Drop every expired key; returns how many were dropped."""
        now = self.clock()
        expired = [key for key, (_, expires_at) in self._data.items() if now >= expires_at]
        for key in expired:
            del self._data[key]
        return len(expired)

    async def delete_many(self, keys: Sequence[str]) -> int:
        await asyncio.sleep(0)
        deleted = 0
        for key in keys:
            if self._get(key) is not None:
                del self._data[key]
                deleted += 1
        return deleted

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._data.clear()

    def keys(self) -> list[str]:
        """Live keys, for inspection in tests and debugging."""
        return [key for key in list(self._data) if self._get(key) is not None]
