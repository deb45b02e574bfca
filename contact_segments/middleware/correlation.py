"""
Correlation ID middleware for request tracing.

Extracts or generates correlation and request IDs from incoming requests,
making them available via context variables for logging and error handling.

Headers:
- X-Correlation-ID: Session-level ID from the client (persists across requests)
- X-Request-ID: Per-request unique identifier
"""

import uuid
import logging
from contextvars import ContextVar
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")


def generate_id() -> str:
    """Generate a short unique ID suitable for logging."""
    return str(uuid.uuid4())[:12]


def get_request_id() -> str:
    """Request ID of the current request, empty outside a request."""
    return request_id_ctx.get()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Sets correlation_id_ctx and request_id_ctx for the duration of a request
    and echoes both IDs back in the response headers.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or generate_id()
        request_id = request.headers.get("X-Request-ID") or generate_id()

        correlation_token = correlation_id_ctx.set(correlation_id)
        request_token = request_id_ctx.set(request_id)

        request.state.correlation_id = correlation_id
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        finally:
            correlation_id_ctx.reset(correlation_token)
            request_id_ctx.reset(request_token)

        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Request-ID"] = request_id

        return response
