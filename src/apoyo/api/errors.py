"""Error responses for the Apoyo API.

Every error is rendered in one envelope:

    {"success": false, "error": {"code": ..., "message": ..., "timestamp": ..., ...}}

Ledger errors map to precise statuses because the caller must react to them:
InsufficientCredits is 402, LedgerUnavailable is 503 (retry is safe).
Cache errors never reach this module; the cache fails open.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, cast

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ExceptionHandler

from apoyo.ledger.errors import InsufficientCredits, LedgerUnavailable, UnknownAccount

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    400: "BadRequest",
    401: "Unauthorized",
    402: "PaymentRequired",
    403: "Forbidden",
    404: "NotFound",
    405: "MethodNotAllowed",
    422: "BadRequest",
    500: "InternalServerError",
    503: "ServiceUnavailable",
}


def error_body(code: str, message: str, **details: Any) -> dict[str, Any]:
    return {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "timestamp": datetime.now(UTC).isoformat(),
            **details,
        },
    }


class ApiError(HTTPException):
    """Base exception for API errors."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        headers: dict[str, str] | None = None,
        **details: Any,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message, headers=headers)

    def to_body(self) -> dict[str, Any]:
        return error_body(self.code, self.message, **self.details)


class BadRequestError(ApiError):
    """Invalid request (400)."""

    def __init__(self, message: str, **details: Any):
        super().__init__(400, "BadRequest", message, **details)


class UnauthorizedError(ApiError):
    """Missing or invalid credentials (401)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(401, "Unauthorized", message, headers={"WWW-Authenticate": "Bearer"})


class PaymentRequiredError(ApiError):
    """Not enough credits (402)."""

    def __init__(self, balance: int, cost: int):
        super().__init__(
            402,
            "InsufficientCredits",
            "Insufficient credits",
            userCredits=balance,
            requiredCredits=cost,
        )


class ForbiddenError(ApiError):
    """Authenticated but not allowed (403)."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(403, "Forbidden", message)


class NotFoundError(ApiError):
    """Resource not found (404)."""

    def __init__(self, resource_type: str, identifier: Any):
        super().__init__(404, "NotFound", f"{resource_type} '{identifier}' not found")


class ServiceUnavailableError(ApiError):
    """A required backend failed (503)."""

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(503, "ServiceUnavailable", message, headers={"Retry-After": "1"})


class InternalServerError(ApiError):
    """Internal server error (500)."""

    def __init__(self, message: str = "An unexpected error occurred"):
        super().__init__(500, "InternalServerError", message)


def _render(error: ApiError) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=error.status_code,
        content=error.to_body(),
        headers={"Cache-Control": "no-store", **(error.headers or {})},
    )


async def api_exception_handler(request: Request, exc: ApiError) -> ORJSONResponse:
    """Exception handler for API errors."""
    return _render(exc)


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> ORJSONResponse:
    """Render framework HTTP errors in the same envelope."""
    code = _STATUS_CODES.get(exc.status_code, "Error")
    return _render(
        ApiError(exc.status_code, code, str(exc.detail), headers=getattr(exc, "headers", None))
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> ORJSONResponse:
    """Render request validation errors as 400."""
    errors = [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    return _render(BadRequestError("Invalid request", errors=errors))


async def insufficient_credits_handler(
    request: Request, exc: InsufficientCredits
) -> ORJSONResponse:
    return _render(PaymentRequiredError(exc.balance, exc.cost))


async def ledger_unavailable_handler(request: Request, exc: LedgerUnavailable) -> ORJSONResponse:
    logger.error(f"Ledger unavailable during {exc.operation}: {exc.reason}")
    return _render(ServiceUnavailableError("Unlock could not be completed, please retry"))


async def unknown_account_handler(request: Request, exc: UnknownAccount) -> ORJSONResponse:
    return _render(NotFoundError("Credit account", exc.user_id))


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    """Exception handler for unexpected errors."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _render(InternalServerError())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, cast(ExceptionHandler, api_exception_handler))
    app.add_exception_handler(
        StarletteHTTPException, cast(ExceptionHandler, http_exception_handler)
    )
    app.add_exception_handler(
        RequestValidationError, cast(ExceptionHandler, validation_exception_handler)
    )
    app.add_exception_handler(
        InsufficientCredits, cast(ExceptionHandler, insufficient_credits_handler)
    )
    app.add_exception_handler(LedgerUnavailable, cast(ExceptionHandler, ledger_unavailable_handler))
    app.add_exception_handler(UnknownAccount, cast(ExceptionHandler, unknown_account_handler))
    app.add_exception_handler(Exception, cast(ExceptionHandler, generic_exception_handler))
