from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.identity.schemas import (
    AcceptInvitationRequest,
    InvitationLookupRead,
    LoginRequest,
    MeRead,
    RefreshRequest,
    TokenPair,
)
from app.identity.service import auth_service
from app.platform.security.context import AccessContext
from app.platform.security.policies import secured


router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=TokenPair)
def login(dto: LoginRequest, db: Session = Depends(get_db)) -> TokenPair:
    return auth_service.login(db, dto.email, dto.password)


@router.post("/refresh", response_model=TokenPair)
def refresh(dto: RefreshRequest, db: Session = Depends(get_db)) -> TokenPair:
    return auth_service.refresh(db, dto.refresh_token)


@router.get("/invitations/{token}", response_model=InvitationLookupRead)
def get_invitation(token: str, db: Session = Depends(get_db)) -> InvitationLookupRead:
    return auth_service.get_invitation(db, token)


@router.post("/accept-invitation", response_model=TokenPair)
def accept_invitation(dto: AcceptInvitationRequest, db: Session = Depends(get_db)) -> TokenPair:
    return auth_service.accept_invitation(db, dto)


@router.post("/logout", status_code=status.HTTP_200_OK)
def logout(
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(secured(tenant=False)),
) -> dict[str, bool]:
    auth_service.logout(db, ctx.user_id)
    return {"success": True}


@router.get("/me", response_model=MeRead)
def me(
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(secured(tenant=False)),
) -> MeRead:
    return auth_service.me(db, ctx.user_id)
