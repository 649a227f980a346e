"""Middleware for the Apoyo API.

- Correlation context for request tracing
- Cache-Control on every response
- CORS configuration
"""

from apoyo.api.middleware.caching import CacheControlMiddleware
from apoyo.api.middleware.correlation import CorrelationMiddleware
from apoyo.api.middleware.cors import configure_cors

__all__ = [
    "CacheControlMiddleware",
    "CorrelationMiddleware",
    "configure_cors",
]
