"""Cache layer errors.

Neither error ever reaches an HTTP caller: ``CacheUnavailable`` degrades
to an uncached response and ``InvalidScope`` skips caching for the request.
"""

from __future__ import annotations


class CacheError(Exception):
    """Base class for edge cache errors."""

    pass


class CacheUnavailable(CacheError):
    """The cache backend failed or timed out."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Cache {operation} failed: {reason}")


class InvalidScope(CacheError):
    """A cache key cannot be derived safely for the given scope."""

    pass
