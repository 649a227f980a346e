"""CORS (Cross-Origin Resource Sharing) configuration.

The browser frontend reads cache diagnostics, so they are exposed along
with the correlation headers.
"""

from __future__ import annotations

from collections.abc import Sequence

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

ALLOW_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]

ALLOW_HEADERS = [
    "Authorization",
    "Content-Type",
    "X-Request-ID",
    "X-Correlation-ID",
    "If-None-Match",
    "Accept",
]

EXPOSE_HEADERS = [
    "X-Request-ID",
    "X-Correlation-ID",
    "ETag",
    "Age",
    "X-Cache-Status",
    "X-Cache-Date",
]


def configure_cors(app: FastAPI, allow_origins: Sequence[str], max_age: int = 600) -> None:
    """Add CORS middleware.

    Credentials are only allowed with an explicit origin list.
    """
    origins = list(allow_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=ALLOW_METHODS,
        allow_headers=ALLOW_HEADERS,
        expose_headers=EXPOSE_HEADERS,
        max_age=max_age,
    )
