"""Cache-Control guarantee for every response.

Cached endpoints set their own caching headers through the edge cache store.
Anything that reaches the client without a Cache-Control header (mutations,
errors raised outside handlers, health probes) is marked uncacheable.
"""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

NO_STORE = "no-store"
PROBE_CACHE_CONTROL = "no-cache, no-store, must-revalidate"


class CacheControlMiddleware(BaseHTTPMiddleware):
    """Ensure every response carries Cache-Control."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)

        if "cache-control" in response.headers:
            return response

        path = request.url.path
        if path.startswith("/health") or path == "/metrics":
            response.headers["Cache-Control"] = PROBE_CACHE_CONTROL
        else:
            response.headers["Cache-Control"] = NO_STORE
        return response
