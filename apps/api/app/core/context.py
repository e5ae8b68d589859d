from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.core.config import get_settings


@dataclass
class RequestContext:
    request_id: str
    dealership_id: str | None
    client_ip: str | None
    user_id: str | None = None


def resolve_client_ip(request: Request, trust_forwarded_for: bool = False) -> str | None:
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    if request.client is not None:
        return request.client.host
    return None


def get_request_context(request: Request) -> RequestContext:
    context = getattr(request.state, "context", None)
    if context is None:
        context = RequestContext(
            request_id=getattr(request.state, "correlation_id", None) or "",
            dealership_id=request.headers.get("x-dealership-id"),
            client_ip=resolve_client_ip(request, get_settings().trust_forwarded_for),
        )
        request.state.context = context
    return context


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        context = get_request_context(request)
        response = await call_next(request)
        response.headers["x-request-id"] = context.request_id
        return response
