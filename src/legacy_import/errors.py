"""Service-level error taxonomy for the legacy import validation service.

Every error raised by the stores and services derives from ImportServiceError
and carries a machine-readable code and the HTTP status the API maps it to:

- ValidationError: malformed input (400)
- NotFoundError: unknown session, cluster or document (404)
- InvalidStateError: action illegal for the entity's current state (409)
- ConflictError: concurrent collision, e.g. a re-cluster job already running (409)

Asynchronous re-cluster job failures are never raised to callers; they are
recorded on the job and observed through the status endpoint.
"""

from __future__ import annotations

from typing import Any


class ImportServiceError(Exception):
    """Base exception for legacy import service errors.

    Attributes:
        code: Machine-readable error code.
        http_status: HTTP status code used by the API layer.
        message: Human-readable error message.
        details: Optional dict with additional error context.
    """

    code = "IMPORT_SERVICE_ERROR"
    http_status = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ImportServiceError):
    """Raised when input is malformed (blank names, too few merge targets, ...)."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(ImportServiceError):
    """Raised when a session, cluster or document is not visible to the tenant."""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, resource: str, resource_id: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"{resource.capitalize()} not found",
            details={"resource": resource, "id": resource_id},
        )


class InvalidStateError(ImportServiceError):
    """Raised when an action is illegal for the entity's current state."""

    code = "INVALID_STATE"
    http_status = 409


class ConflictError(ImportServiceError):
    """Raised when a concurrent operation already holds the resource."""

    code = "CONFLICT"
    http_status = 409
