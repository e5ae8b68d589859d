from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.core.auth import get_current_principal
from app.core.database import get_db
from app.platform.security.context import AccessContext, Principal, TenantRole
from app.platform.security.errors import AuthorizationError
from app.platform.security.tenancy import resolve_tenant_context


class AccessCheck(Protocol):
    """A route predicate; raises AuthorizationError when access is denied."""

    def __call__(self, ctx: AccessContext) -> None:
        ...


def require_roles(*roles: TenantRole | str) -> AccessCheck:
    allowed = {TenantRole(role) for role in roles}

    def check(ctx: AccessContext) -> None:
        if ctx.role is None or ctx.role not in allowed:
            raise AuthorizationError("Insufficient role for this action", reason="role")

    return check


def require_platform_admin() -> AccessCheck:
    def check(ctx: AccessContext) -> None:
        if not ctx.principal.is_platform_admin:
            raise AuthorizationError("Platform admin access required", reason="platform_admin")

    return check


def require_platform_or_tenant_admin() -> AccessCheck:
    def check(ctx: AccessContext) -> None:
        principal = ctx.principal
        if principal.is_platform_admin or principal.is_platform_operator:
            return
        if ctx.role == TenantRole.ADMIN:
            return
        raise AuthorizationError(
            "Requires platform operator/admin or dealership admin role",
            reason="platform_or_tenant_admin",
        )

    return check


def evaluate_checks(ctx: AccessContext, checks: tuple[AccessCheck, ...]) -> None:
    for check in checks:
        check(ctx)


def to_http_exception(exc: AuthorizationError) -> HTTPException:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return HTTPException(status_code=exc.status_code, detail=exc.message, headers=headers)


def secured(*checks: AccessCheck, tenant: bool = True) -> Callable[..., AccessContext]:
    """Build the FastAPI dependency guarding one route.

    Evaluation order is identity, then tenant resolution (unless the route is
    tenant exempt), then each check in the order given. Routes that are public
    simply do not depend on this.
    """

    def dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        db: Session = Depends(get_db),
        dealership_header: str | None = Header(default=None, alias="x-dealership-id"),
    ) -> AccessContext:
        correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
        ctx = AccessContext(principal=principal, correlation_id=correlation_id)
        try:
            if tenant:
                ctx.tenant = resolve_tenant_context(db, principal, dealership_header)
            evaluate_checks(ctx, checks)
        except AuthorizationError as exc:
            raise to_http_exception(exc) from None
        return ctx

    return dependency
