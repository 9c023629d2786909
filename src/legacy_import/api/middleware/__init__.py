"""API middleware."""

from legacy_import.api.middleware.request_id import RequestIdMiddleware

__all__ = ["RequestIdMiddleware"]
