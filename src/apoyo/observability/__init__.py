"""Observability module for the Apoyo API.

Provides metrics and structured logging:
- Prometheus metrics (HTTP, edge cache, invalidation, ledger)
- Request/response instrumentation
- JSON structured logging with correlation IDs
"""

from apoyo.observability.logging import (
    LogContext,
    configure_logging,
    correlation_id_var,
    request_id_var,
    tenant_id_var,
    user_id_var,
)
from apoyo.observability.metrics import (
    MetricsMiddleware,
    get_metrics,
    metrics_registry,
)

__all__ = [
    # Logging
    "configure_logging",
    "LogContext",
    "request_id_var",
    "correlation_id_var",
    "tenant_id_var",
    "user_id_var",
    # Metrics
    "metrics_registry",
    "get_metrics",
    "MetricsMiddleware",
]
