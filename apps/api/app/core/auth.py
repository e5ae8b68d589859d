from __future__ import annotations

import uuid

from fastapi import HTTPException, status
from starlette.requests import Request

from app.core.security import TokenError, decode_access_token
from app.metrics import observe_auth_failure
from app.platform.security.context import Principal


def _unauthorized(detail: str, reason: str) -> HTTPException:
    observe_auth_failure(reason)
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_principal(request: Request) -> Principal:
    auth_header = request.headers.get("authorization", "")
    token = auth_header[len("Bearer ") :].strip() if auth_header.startswith("Bearer ") else ""
    if not token:
        raise _unauthorized("Authentication required", "missing_token")

    try:
        payload = decode_access_token(token)
        principal = Principal(
            id=uuid.UUID(str(payload["sub"])),
            email=str(payload.get("email") or ""),
            is_platform_admin=bool(payload.get("is_platform_admin", False)),
            is_platform_operator=bool(payload.get("is_platform_operator", False)),
        )
    except (TokenError, ValueError):
        raise _unauthorized("Invalid or expired token", "invalid_token") from None

    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = str(principal.id)
    return principal
