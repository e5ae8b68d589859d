from __future__ import annotations

import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import bound_request


CORRELATION_HEADER = "x-correlation-id"
TENANT_HEADER = "x-dealership-id"


def _header(request: Request, name: str) -> str | None:
    value = request.headers.get(name, "").strip()
    return value or None


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Outermost middleware: every later layer logs under the bound correlation id and dealership."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = _header(request, CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)

        with bound_request(correlation_id, _header(request, TENANT_HEADER)):
            response = await call_next(request)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
