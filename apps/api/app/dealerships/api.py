from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.dealerships.schemas import (
    DealershipCreate,
    DealershipRead,
    DealershipSettingsRead,
    DealershipSettingsUpdate,
    InvitationCreate,
    InvitationRead,
    MembershipProvision,
    MembershipRoleUpdate,
    TeamMemberRead,
)
from app.dealerships.service import dealership_service
from app.platform.security.context import AccessContext, TenantRole
from app.platform.security.policies import (
    require_platform_admin,
    require_platform_or_tenant_admin,
    require_roles,
    secured,
)


platform_router = APIRouter(prefix="/api/platform/dealerships", tags=["platform.dealerships"])
settings_router = APIRouter(prefix="/api/dealership", tags=["dealership.settings"])
team_router = APIRouter(prefix="/api/team", tags=["dealership.team"])

platform_admin = secured(require_platform_admin(), tenant=False)
tenant_admin = secured(require_platform_or_tenant_admin())


@platform_router.post("", response_model=DealershipRead, status_code=status.HTTP_201_CREATED)
def create_dealership(
    dto: DealershipCreate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(platform_admin),
) -> DealershipRead:
    return dealership_service.create_dealership(db, ctx, dto)


@platform_router.get("", response_model=list[DealershipRead])
def list_dealerships(
    q: str | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(platform_admin),
) -> list[DealershipRead]:
    return dealership_service.list_dealerships(db, q)


@settings_router.get("/settings", response_model=DealershipSettingsRead)
def get_settings(
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(tenant_admin),
) -> DealershipSettingsRead:
    return dealership_service.get_settings(db, ctx)


@settings_router.patch("/settings", response_model=DealershipSettingsRead)
def update_settings(
    dto: DealershipSettingsUpdate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(tenant_admin),
) -> DealershipSettingsRead:
    return dealership_service.update_settings(db, ctx, dto)


@team_router.get("/users", response_model=list[TeamMemberRead])
def list_team(
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(secured()),
) -> list[TeamMemberRead]:
    return dealership_service.list_team(db, ctx, include_inactive=include_inactive)


@team_router.post("/users", response_model=TeamMemberRead, status_code=status.HTTP_201_CREATED)
def provision_member(
    dto: MembershipProvision,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(tenant_admin),
) -> TeamMemberRead:
    return dealership_service.provision_member(db, ctx, dto)


@team_router.patch("/users/{user_id}/role", response_model=TeamMemberRead)
def set_role(
    user_id: uuid.UUID,
    dto: MembershipRoleUpdate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(tenant_admin),
) -> TeamMemberRead:
    return dealership_service.set_role(db, ctx, user_id, dto.role)


@team_router.post("/users/{user_id}/deactivate", response_model=TeamMemberRead)
def deactivate_member(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(tenant_admin),
) -> TeamMemberRead:
    return dealership_service.deactivate_member(db, ctx, user_id)


@team_router.post("/invitations", response_model=InvitationRead, status_code=status.HTTP_201_CREATED)
def create_invitation(
    dto: InvitationCreate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(secured(require_roles(TenantRole.ADMIN, TenantRole.MANAGER))),
) -> InvitationRead:
    return dealership_service.create_invitation(db, ctx, dto)


@team_router.get("/invitations", response_model=list[InvitationRead])
def list_invitations(
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(secured(require_roles(TenantRole.ADMIN, TenantRole.MANAGER))),
) -> list[InvitationRead]:
    return dealership_service.list_invitations(db, ctx)
