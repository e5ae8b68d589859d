from __future__ import annotations

import uuid

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from app.dealerships.models import Dealership, Membership
from app.metrics import observe_tenant_denial
from app.platform.security.context import Principal, TenantContext, TenantRole
from app.platform.security.errors import AuthorizationError, TenantHeaderMissingError


def resolve_tenant_context(session: Session, principal: Principal, dealership_header: str | None) -> TenantContext:
    """Resolve the acting dealership for a request from the x-dealership-id header.

    A missing header is a client error; an unknown dealership, malformed id or
    missing/inactive membership are all reported identically as forbidden so the
    response does not reveal which dealerships exist.
    """

    raw = (dealership_header or "").strip()
    if not raw:
        observe_tenant_denial("header_missing")
        raise TenantHeaderMissingError()

    try:
        dealership_id = uuid.UUID(raw)
    except ValueError:
        observe_tenant_denial("malformed_id")
        raise AuthorizationError("User does not have access to this dealership", reason="no_membership") from None

    membership = session.scalar(
        select(Membership)
        .join(Dealership, Dealership.id == Membership.dealership_id)
        .where(
            and_(
                Membership.user_id == principal.id,
                Membership.dealership_id == dealership_id,
                Membership.is_active.is_(True),
                Dealership.is_active.is_(True),
            )
        )
    )
    if membership is None:
        observe_tenant_denial("no_membership")
        raise AuthorizationError("User does not have access to this dealership", reason="no_membership")

    return TenantContext(dealership_id=dealership_id, role=TenantRole(membership.role))
