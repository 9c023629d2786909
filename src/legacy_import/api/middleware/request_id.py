"""Request ID middleware.

Every request gets an id used in logs, audit correlation and error envelopes.
"""

import uuid
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from legacy_import.api.error_model import REQUEST_ID_HEADER


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to every request and response.

    An incoming non-blank X-Request-Id is reused; otherwise a uuid4 is generated.
    The id is stored on request.state.request_id.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER)
        request_id = incoming.strip() if incoming and incoming.strip() else str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
