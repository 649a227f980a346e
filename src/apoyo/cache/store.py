"""Tiered edge cache store.

Wraps an :class:`~apoyo.cache.backend.EdgeBackend` with HTTP caching
semantics:
- Cache-Control built from the endpoint's policy tier
- ETag from a SHA-256 content hash of the body
- capture timestamp (X-Cache-Date) and freshness/stale windows
- X-Cache-Status HIT/MISS so cache behaviour is observable from outside

An entry is served until its staleUntil and is a miss afterwards, even if the
backend still holds it. The stale-while-revalidate window is advertised to
downstream caches through Cache-Control; it is not refreshed internally.

The cache is an optimization: every public method fails open. A backend
error or timeout becomes a miss, an uncached response, or ``False``.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import formatdate
from typing import TypeVar

import orjson
from starlette.requests import Request
from starlette.responses import Response

from apoyo.cache.backend import EdgeBackend
from apoyo.cache.errors import CacheUnavailable
from apoyo.cache.policy import CachePolicy
from apoyo.observability.metrics import (
    record_cache_error,
    record_cache_hit,
    record_cache_miss,
    record_cache_operation,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CACHE_STATUS_HEADER = "X-Cache-Status"
CACHE_DATE_HEADER = "X-Cache-Date"

# Headers computed on put; any copy on the original response is replaced
_MANAGED_HEADERS = frozenset(
    {"cache-control", "cdn-cache-control", "etag", "last-modified", "x-cache-date", "x-cache-status"}
)

CACHEABLE_METHODS = frozenset({"GET", "HEAD"})


def generate_etag(body: bytes) -> str:
    """Generate a quoted ETag from the response body."""
    return f'"{hashlib.sha256(body).hexdigest()}"'


@dataclass
class CacheEntry:
    """One cached response.

    Entries are replaced, never patched. ``headers`` keeps the original
    response headers in order, including content-type and CORS headers.
    """

    key: str
    body: bytes
    status: int
    headers: list[tuple[str, str]]
    created_at: float
    fresh_until: float
    stale_until: float
    etag: str = field(default="")

    def is_fresh(self, now: float) -> bool:
        return now < self.fresh_until

    def is_servable(self, now: float) -> bool:
        return now < self.stale_until

    def age(self, now: float) -> int:
        return max(int(now - self.created_at), 0)

    def header(self, name: str) -> str | None:
        """Return the first header value with this name (case-insensitive)."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None

    def meta_bytes(self) -> bytes:
        """Serialize everything except the body."""
        return orjson.dumps(
            {
                "status": self.status,
                "headers": self.headers,
                "created_at": self.created_at,
                "fresh_until": self.fresh_until,
                "stale_until": self.stale_until,
                "etag": self.etag,
            }
        )

    @classmethod
    def from_stored(cls, key: str, meta: bytes, body: bytes) -> "CacheEntry":
        parsed = orjson.loads(meta)
        return cls(
            key=key,
            body=body,
            status=int(parsed["status"]),
            headers=[(str(k), str(v)) for k, v in parsed["headers"]],
            created_at=float(parsed["created_at"]),
            fresh_until=float(parsed["fresh_until"]),
            stale_until=float(parsed["stale_until"]),
            etag=parsed.get("etag", ""),
        )


def meta_key(key: str) -> str:
    return f"{key}:meta"


def body_key(key: str) -> str:
    return f"{key}:body"


def storage_keys(key: str) -> tuple[str, str]:
    """Both backend keys that hold one entry."""
    return meta_key(key), body_key(key)


class TieredCacheStore:
    """HTTP-aware cache store over an edge backend.

    Constructed once per process and handed to handlers; there is no
    module-level default instance.
    """

    def __init__(
        self,
        backend: EdgeBackend,
        timeout: float = 0.25,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.timeout = timeout
        self.clock = clock

    # -------------------------------------------------------------------------
    # Backend calls (bounded, raising CacheUnavailable)
    # -------------------------------------------------------------------------

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        start = time.perf_counter()
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise CacheUnavailable(operation, f"timed out after {self.timeout}s") from e
        except Exception as e:
            raise CacheUnavailable(operation, str(e) or e.__class__.__name__) from e
        finally:
            record_cache_operation(operation, time.perf_counter() - start, self.backend.name)

    # -------------------------------------------------------------------------
    # Entry operations
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> CacheEntry | None:
        """Return the entry for ``key`` if it is before its staleUntil."""
        try:
            meta, body = await self._call("get", self.backend.get_pair(*storage_keys(key)))
        except CacheUnavailable as e:
            logger.warning(f"Cache get failed open for {key}: {e.reason}")
            record_cache_error("get", self.backend.name)
            return None

        if meta is None or body is None:
            record_cache_miss(self.backend.name)
            return None

        try:
            entry = CacheEntry.from_stored(key, meta, body)
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            record_cache_miss(self.backend.name)
            return None

        if not entry.is_servable(self.clock()):
            record_cache_miss(self.backend.name)
            return None

        record_cache_hit(self.backend.name)
        return entry

    def build_entry(
        self,
        key: str,
        body: bytes,
        status: int,
        headers: Iterable[tuple[str, str]],
        policy: CachePolicy,
    ) -> CacheEntry:
        """Wrap a response in a cache entry with computed caching headers."""
        now = self.clock()
        fresh_until = now + policy.freshness
        stale_until = fresh_until + policy.stale_while_revalidate
        etag = generate_etag(body)

        kept = [(k, v) for k, v in headers if k.lower() not in _MANAGED_HEADERS]
        kept.extend(
            [
                ("Cache-Control", policy.cache_control()),
                ("CDN-Cache-Control", f"max-age={policy.s_max_age}"),
                ("ETag", etag),
                ("Last-Modified", formatdate(now, usegmt=True)),
                (CACHE_DATE_HEADER, datetime.fromtimestamp(now, UTC).isoformat()),
            ]
        )

        return CacheEntry(
            key=key,
            body=body,
            status=status,
            headers=kept,
            created_at=now,
            fresh_until=fresh_until,
            stale_until=stale_until,
            etag=etag,
        )

    async def put(
        self,
        key: str,
        body: bytes,
        status: int,
        headers: Iterable[tuple[str, str]],
        policy: CachePolicy,
        method: str = "GET",
    ) -> CacheEntry | None:
        """Store a response.

        Returns the stored entry, or None when the response is not cacheable
        (non-2xx, non-read method, disabled policy, zero lifetime) or the
        backend failed.
        """
        if not policy.enabled or method.upper() not in CACHEABLE_METHODS:
            return None
        if not 200 <= status < 300:
            return None

        entry = self.build_entry(key, body, status, headers, policy)
        ttl_ms = int((entry.stale_until - entry.created_at) * 1000)
        if ttl_ms <= 0:
            return None

        try:
            await self._call(
                "put",
                self.backend.set_pair(
                    meta_key(key), body_key(key), entry.meta_bytes(), entry.body, ttl_ms
                ),
            )
        except CacheUnavailable as e:
            logger.warning(f"Cache put failed open for {key}: {e.reason}")
            record_cache_error("put", self.backend.name)
            return None

        return entry

    async def delete(self, key: str) -> bool:
        """Delete one entry. Absence of the key is not an error."""
        try:
            deleted = await self.delete_keys([key])
        except CacheUnavailable as e:
            logger.warning(f"Cache delete failed for {key}: {e.reason}")
            record_cache_error("delete", self.backend.name)
            return False
        return deleted > 0

    async def delete_keys(self, keys: Sequence[str]) -> int:
        """Delete many entries in one backend call.

        Returns the number of entries removed.

        Raises:
            CacheUnavailable: If the backend failed; callers decide how to absorb it
        """
        if not keys:
            return 0
        physical = [k for key in keys for k in storage_keys(key)]
        removed = await self._call("delete", self.backend.delete_many(physical))
        # Each entry occupies two physical keys
        return (removed + 1) // 2

    async def health_check(self) -> bool:
        """Check backend connectivity."""
        try:
            return await self._call("ping", self.backend.ping())
        except CacheUnavailable:
            return False

    # -------------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------------

    async def get_response(self, key: str, request: Request | None = None) -> Response | None:
        """Serve a cached response, or None on miss.

        Answers 304 when the request's If-None-Match matches the entry's ETag.
        """
        entry = await self.get(key)
        if entry is None:
            return None

        now = self.clock()
        if request is not None and _etag_matches(request.headers.get("if-none-match"), entry.etag):
            not_modified = Response(status_code=304)
            not_modified.raw_headers = _encode_headers(
                [(k, v) for k, v in entry.headers if k.lower() in _MANAGED_HEADERS]
                + [(CACHE_STATUS_HEADER, "HIT"), ("Age", str(entry.age(now)))]
            )
            return not_modified

        return _entry_response(entry, "HIT", extra=[("Age", str(entry.age(now)))])

    async def put_response(
        self,
        key: str,
        response: Response,
        policy: CachePolicy,
        method: str = "GET",
    ) -> Response:
        """Store a handler's response and return it with caching headers.

        On anything that prevents caching, the original response comes back
        unchanged (apart from ``no-store`` on disabled policies).
        """
        if not policy.enabled:
            response.headers["Cache-Control"] = policy.cache_control()
            return response

        if not _is_storable(response):
            return response

        entry = await self.put(
            key,
            bytes(response.body),
            response.status_code,
            _decode_headers(response.raw_headers),
            policy,
            method=method,
        )
        if entry is None:
            return response
        return _entry_response(entry, "MISS")


def _is_storable(response: Response) -> bool:
    """Check response-level conditions that forbid storing."""
    if not hasattr(response, "body"):
        # Streaming responses have no materialized body
        return False
    cache_control = response.headers.get("cache-control", "").lower()
    if "no-store" in cache_control or "no-cache" in cache_control:
        return False
    # Never put a cookie-setting response into a shared cache
    if "set-cookie" in response.headers:
        return False
    return True


def _etag_matches(if_none_match: str | None, etag: str) -> bool:
    if not if_none_match or not etag:
        return False
    candidates = {tag.strip().removeprefix("W/") for tag in if_none_match.split(",")}
    return "*" in candidates or etag in candidates


def _decode_headers(raw: Iterable[tuple[bytes, bytes]]) -> list[tuple[str, str]]:
    return [(k.decode("latin-1"), v.decode("latin-1")) for k, v in raw]


def _encode_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[bytes, bytes]]:
    return [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers]


def _entry_response(
    entry: CacheEntry, status: str, extra: list[tuple[str, str]] | None = None
) -> Response:
    """Build a response carrying the entry's body and headers verbatim."""
    response = Response(content=entry.body, status_code=entry.status)
    headers = [(k, v) for k, v in entry.headers if k.lower() != "content-length"]
    headers.append(("content-length", str(len(entry.body))))
    headers.append((CACHE_STATUS_HEADER, status))
    headers.extend(extra or [])
    response.raw_headers = _encode_headers(headers)
    return response
