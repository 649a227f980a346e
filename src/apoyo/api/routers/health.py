"""Health check endpoints for the Apoyo API.

Provides Kubernetes-compatible liveness and readiness probes:
- /health/live  - Liveness probe (always returns OK if process is running)
- /health/ready - Readiness probe (checks database and edge cache connectivity)

The edge cache is an optimization, so a cache outage reports ``degraded``
and keeps the instance ready. A database outage makes it unready.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import ORJSONResponse

router = APIRouter(tags=["health"])

CHECK_TIMEOUT = 5.0  # seconds


class HealthStatus(str, Enum):
    """Health check status."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Health status of a single component."""

    name: str
    status: HealthStatus
    latency_ms: float
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        result: dict[str, Any] = {
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            result["message"] = self.message
        return result


async def check_component(name: str, probe: Callable[[], Awaitable[bool]]) -> ComponentHealth:
    """Run one probe under a timeout."""
    start = time.monotonic()
    try:
        healthy = await asyncio.wait_for(probe(), timeout=CHECK_TIMEOUT)
        message = None if healthy else f"{name} check failed"
    except asyncio.TimeoutError:
        healthy, message = False, f"{name} check timed out"
    except Exception as e:
        healthy, message = False, str(e)
    return ComponentHealth(
        name=name,
        status=HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY,
        latency_ms=(time.monotonic() - start) * 1000,
        message=message,
    )


@router.get("/health/live")
async def liveness() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}


@router.get("/health/ready")
async def readiness(request: Request) -> ORJSONResponse:
    """Readiness probe.

    Returns 503 when the database is down; a cache outage only degrades.
    """
    db_result, cache_result = await asyncio.gather(
        check_component("database", request.app.state.db.health_check),
        check_component("cache", request.app.state.cache_store.health_check),
    )

    if db_result.status is not HealthStatus.HEALTHY:
        overall = HealthStatus.UNHEALTHY
    elif cache_result.status is not HealthStatus.HEALTHY:
        cache_result.status = HealthStatus.DEGRADED
        overall = HealthStatus.DEGRADED
    else:
        overall = HealthStatus.HEALTHY

    return ORJSONResponse(
        content={
            "status": overall.value,
            "checks": {c.name: c.to_dict() for c in (db_result, cache_result)},
        },
        status_code=503 if overall is HealthStatus.UNHEALTHY else 200,
    )
