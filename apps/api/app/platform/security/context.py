from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import StrEnum


class TenantRole(StrEnum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    SALES = "SALES"
    BDC = "BDC"


@dataclass(slots=True, frozen=True)
class Principal:
    """Authenticated caller derived from a verified access token."""

    id: uuid.UUID
    email: str
    is_platform_admin: bool = False
    is_platform_operator: bool = False


@dataclass(slots=True, frozen=True)
class TenantContext:
    dealership_id: uuid.UUID
    role: TenantRole


@dataclass(slots=True)
class AccessContext:
    """What a secured route receives: the principal plus the resolved tenant, when required."""

    principal: Principal
    tenant: TenantContext | None = None
    correlation_id: str | None = None

    @property
    def user_id(self) -> uuid.UUID:
        return self.principal.id

    @property
    def dealership_id(self) -> uuid.UUID:
        if self.tenant is None:
            raise RuntimeError("route is tenant exempt")
        return self.tenant.dealership_id

    @property
    def role(self) -> TenantRole | None:
        return self.tenant.role if self.tenant is not None else None
