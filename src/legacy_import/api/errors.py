"""API error handling.

Exception handlers rendering every failure as the error envelope from
error_model.make_error_response:

- ImportServiceError: service taxonomy (400/404/409) with its own code
- ApiHttpError: API-layer errors (authentication)
- AuditSinkError: audit log unavailable, fail closed (500 AUDIT_FAILURE)
- HTTPException: FastAPI/Starlette HTTP exceptions (unknown routes, 405)
- RequestValidationError: body/query schema errors (422)
- Exception: catch-all, generic 500 with the stack trace only in the log
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from legacy_import.api.error_model import get_error_code_for_status, make_error_response
from legacy_import.audit import AuditSinkError
from legacy_import.errors import ImportServiceError

logger = logging.getLogger(__name__)


class ApiHttpError(Exception):
    """API-level HTTP error with structured error envelope.

    Attributes:
        status_code: HTTP status code (e.g., 401).
        code: Machine-readable error code (e.g., "UNAUTHORIZED").
        message: Human-readable error message.
        details: Optional dict with additional error context.
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


async def api_http_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, ApiHttpError)
    return make_error_response(
        request,
        code=exc.code,
        message=exc.message,
        http_status=exc.status_code,
        details=exc.details,
    )


async def import_service_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map service errors to their HTTP status and code."""
    assert isinstance(exc, ImportServiceError)
    logger.info(
        "Request rejected: %s %s",
        exc.code,
        exc.message,
        extra={"request_id": getattr(request.state, "request_id", None)},
    )
    return make_error_response(
        request,
        code=exc.code,
        message=exc.message,
        http_status=exc.http_status,
        details=exc.details,
    )


async def audit_sink_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fail closed when a decision could not be audited; the change was not applied."""
    assert isinstance(exc, AuditSinkError)
    logger.error(
        "Audit emission failed: %s",
        exc,
        extra={"request_id": getattr(request.state, "request_id", None)},
    )
    return make_error_response(
        request,
        code="AUDIT_FAILURE",
        message="The change could not be recorded in the audit log and was not applied",
        http_status=500,
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, StarletteHTTPException)
    return make_error_response(
        request,
        code=get_error_code_for_status(exc.status_code),
        message=str(exc.detail) if exc.detail else f"HTTP {exc.status_code}",
        http_status=exc.status_code,
    )


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map schema errors to a field/message list without echoing input values."""
    assert isinstance(exc, RequestValidationError)

    safe_details: list[dict[str, Any]] = []
    for error in exc.errors():
        loc = error.get("loc", ())
        safe_loc = [str(part) for part in loc if part not in ("body", "query", "path")]
        safe_details.append(
            {
                "field": ".".join(safe_loc) if safe_loc else "request",
                "message": error.get("msg", "Validation error"),
            }
        )

    return make_error_response(
        request,
        code="REQUEST_VALIDATION_FAILED",
        message="Request validation failed",
        http_status=422,
        details={"errors": safe_details} if safe_details else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: 500 with a generic message; details go to the log only."""
    logger.exception(
        "Unhandled exception: %s",
        type(exc).__name__,
        extra={"request_id": getattr(request.state, "request_id", None)},
    )
    return make_error_response(
        request,
        code="INTERNAL_ERROR",
        message="An internal error occurred",
        http_status=500,
    )
