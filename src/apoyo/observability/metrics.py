"""Prometheus metrics for the Apoyo API.

Provides metrics collection and exposure:
- HTTP request metrics (latency, count)
- Edge cache metrics (hits, misses, errors, latency)
- Invalidation metrics (keys deleted, partial failures)
- Ledger metrics (spend outcomes)

Usage:
    from apoyo.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.ledger_spend_total.labels(outcome="granted").inc()
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from prometheus_client import REGISTRY, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from apoyo.config import settings

if TYPE_CHECKING:
    from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

_NUMERIC_SEGMENT = re.compile(r"^\d+$")


@dataclass
class MetricsRegistry:
    """Registry for Prometheus metrics."""

    # HTTP metrics
    http_requests_total: Any = None
    http_request_duration_seconds: Any = None

    # Cache metrics
    cache_hits_total: Any = None
    cache_misses_total: Any = None
    cache_errors_total: Any = None
    cache_operation_duration_seconds: Any = None

    # Invalidation metrics
    invalidated_keys_total: Any = None
    invalidation_failures_total: Any = None

    # Ledger metrics
    ledger_spend_total: Any = None

    _initialized: bool = field(default=False, repr=False)
    _registry: Any = field(default=None, repr=False)

    def initialize(self) -> None:
        """Initialize Prometheus metrics."""
        if self._initialized:
            return

        if not settings.enable_metrics:
            logger.info("Metrics are disabled")
            self._initialized = True
            return

        self._registry = REGISTRY

        self.http_requests_total = Counter(
            "apoyo_http_requests_total",
            "Total HTTP requests",
            ["method", "path", "status"],
        )
        self.http_request_duration_seconds = Histogram(
            "apoyo_http_request_duration_seconds",
            "HTTP request latency in seconds",
            ["method", "path"],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        )

        self.cache_hits_total = Counter(
            "apoyo_cache_hits_total",
            "Edge cache hits",
            ["cache_type"],
        )
        self.cache_misses_total = Counter(
            "apoyo_cache_misses_total",
            "Edge cache misses",
            ["cache_type"],
        )
        self.cache_errors_total = Counter(
            "apoyo_cache_errors_total",
            "Edge cache operations that failed open",
            ["operation", "cache_type"],
        )
        self.cache_operation_duration_seconds = Histogram(
            "apoyo_cache_operation_duration_seconds",
            "Edge cache operation latency in seconds",
            ["operation", "cache_type"],
            buckets=(0.0001, 0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25),
        )

        self.invalidated_keys_total = Counter(
            "apoyo_invalidated_keys_total",
            "Cache keys deleted by invalidation",
            ["entity_kind"],
        )
        self.invalidation_failures_total = Counter(
            "apoyo_invalidation_failures_total",
            "Invalidations that could not delete every key",
            ["entity_kind"],
        )

        self.ledger_spend_total = Counter(
            "apoyo_ledger_spend_total",
            "Credit ledger spend outcomes",
            ["outcome"],
        )

        self._initialized = True
        logger.info("Prometheus metrics initialized")

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if self._registry is None:
            return b"# Metrics disabled\n"
        return generate_latest(self._registry)


# Global metrics registry
metrics_registry = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry.

    Initializes metrics on first access.
    """
    if not metrics_registry._initialized:
        metrics_registry.initialize()
    return metrics_registry


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware for HTTP request metrics."""

    def __init__(self, app: "ASGIApp") -> None:
        super().__init__(app)
        self.metrics = get_metrics()

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        """Record metrics for HTTP requests."""
        if request.url.path.startswith("/health") or request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = normalize_path(request.url.path)
        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration = time.perf_counter() - start_time
            if self.metrics.http_requests_total:
                self.metrics.http_requests_total.labels(
                    method=method,
                    path=path,
                    status=status_code,
                ).inc()
            if self.metrics.http_request_duration_seconds:
                self.metrics.http_request_duration_seconds.labels(
                    method=method,
                    path=path,
                ).observe(duration)


def normalize_path(path: str) -> str:
    """Replace numeric path segments with a placeholder.

    Examples:
        /api/contacts/42 -> /api/contacts/{id}
        /api/admin/contacts/7 -> /api/admin/contacts/{id}
    """
    parts = [
        "{id}" if _NUMERIC_SEGMENT.match(part) else part for part in path.strip("/").split("/")
    ]
    return "/" + "/".join(parts) if path.strip("/") else path


def record_cache_hit(cache_type: str = "redis") -> None:
    """Record cache hit."""
    metrics = get_metrics()
    if metrics.cache_hits_total:
        metrics.cache_hits_total.labels(cache_type=cache_type).inc()


def record_cache_miss(cache_type: str = "redis") -> None:
    """Record cache miss."""
    metrics = get_metrics()
    if metrics.cache_misses_total:
        metrics.cache_misses_total.labels(cache_type=cache_type).inc()


def record_cache_error(operation: str, cache_type: str = "redis") -> None:
    """Record a cache operation that failed open."""
    metrics = get_metrics()
    if metrics.cache_errors_total:
        metrics.cache_errors_total.labels(operation=operation, cache_type=cache_type).inc()


def record_cache_operation(operation: str, duration: float, cache_type: str = "redis") -> None:
    """Record cache operation duration.

    Args:
        operation: Cache operation (get, put, delete)
        duration: Operation duration in seconds
        cache_type: Type of cache backend (redis, memory)
    """
    metrics = get_metrics()
    if metrics.cache_operation_duration_seconds:
        metrics.cache_operation_duration_seconds.labels(
            operation=operation,
            cache_type=cache_type,
        ).observe(duration)


def record_invalidation(entity_kind: str, deleted: int, failed: bool) -> None:
    """Record the outcome of one invalidation fan-out."""
    metrics = get_metrics()
    if metrics.invalidated_keys_total and deleted:
        metrics.invalidated_keys_total.labels(entity_kind=entity_kind).inc(deleted)
    if metrics.invalidation_failures_total and failed:
        metrics.invalidation_failures_total.labels(entity_kind=entity_kind).inc()


def record_ledger_outcome(outcome: str) -> None:
    """Record a ledger spend outcome.

    Args:
        outcome: granted, already_unlocked, insufficient, compensated, failed
    """
    metrics = get_metrics()
    if metrics.ledger_spend_total:
        metrics.ledger_spend_total.labels(outcome=outcome).inc()
