from __future__ import annotations

import logging
import secrets
import uuid
from datetime import timedelta

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import utcnow
from app.core.security import hash_password
from app.dealerships.models import Dealership, Invitation, Membership
from app.dealerships.schemas import (
    DealershipCreate,
    DealershipRead,
    DealershipSettingsRead,
    DealershipSettingsUpdate,
    InvitationCreate,
    InvitationRead,
    MembershipProvision,
    TeamMemberRead,
)
from app.identity.models import User
from app.platform.security.context import AccessContext, TenantRole
from app.services.audit import write_audit_log


logger = logging.getLogger("app.dealerships")


def _to_member(membership: Membership) -> TeamMemberRead:
    return TeamMemberRead(
        membership_id=membership.id,
        user_id=membership.user_id,
        email=membership.user.email,
        first_name=membership.user.first_name,
        last_name=membership.user.last_name,
        role=membership.role,
        is_active=membership.is_active,
    )


def require_active_member(session: Session, dealership_id: uuid.UUID, user_id: uuid.UUID) -> Membership:
    membership = session.scalar(
        select(Membership).where(
            Membership.dealership_id == dealership_id,
            Membership.user_id == user_id,
            Membership.is_active.is_(True),
        )
    )
    if membership is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Assignee must be an active member of this dealership")
    return membership


class DealershipService:
    def create_dealership(self, session: Session, ctx: AccessContext, dto: DealershipCreate) -> DealershipRead:
        dealership = Dealership(
            name=dto.name,
            slug=dto.slug,
            timezone=dto.timezone,
            twilio_messaging_service_sid=dto.twilio_messaging_service_sid,
            twilio_from_phone=dto.twilio_from_phone,
        )
        session.add(dealership)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Dealership slug already exists") from None

        write_audit_log(
            session,
            action="dealership.created",
            entity_type="dealership",
            entity_id=dealership.id,
            dealership_id=dealership.id,
            actor_user_id=ctx.user_id,
            metadata={"slug": dealership.slug},
        )
        return DealershipRead.model_validate(dealership)

    def list_dealerships(self, session: Session, q: str | None = None) -> list[DealershipRead]:
        stmt = select(Dealership).order_by(Dealership.name.asc())
        if q:
            stmt = stmt.where(Dealership.name.ilike(f"%{q}%") | Dealership.slug.ilike(f"%{q}%"))
        return [DealershipRead.model_validate(item) for item in session.scalars(stmt).all()]

    def get_settings(self, session: Session, ctx: AccessContext) -> DealershipSettingsRead:
        dealership = self._get(session, ctx.dealership_id)
        return self._to_settings(dealership)

    def update_settings(self, session: Session, ctx: AccessContext, dto: DealershipSettingsUpdate) -> DealershipSettingsRead:
        dealership = self._get(session, ctx.dealership_id)
        changes = dto.model_dump(exclude_unset=True)
        for key, value in changes.items():
            setattr(dealership, key, value)
        session.commit()

        write_audit_log(
            session,
            action="dealership.settings_updated",
            entity_type="dealership",
            entity_id=dealership.id,
            dealership_id=dealership.id,
            actor_user_id=ctx.user_id,
            metadata={"fields": sorted(changes.keys())},
        )
        return self._to_settings(dealership)

    def list_team(self, session: Session, ctx: AccessContext, include_inactive: bool = False) -> list[TeamMemberRead]:
        stmt = select(Membership).where(Membership.dealership_id == ctx.dealership_id)
        if not include_inactive:
            stmt = stmt.where(Membership.is_active.is_(True))
        memberships = session.scalars(stmt).all()
        members = [_to_member(item) for item in memberships]
        return sorted(members, key=lambda member: member.email)

    def provision_member(self, session: Session, ctx: AccessContext, dto: MembershipProvision) -> TeamMemberRead:
        email = str(dto.email).lower()
        user = session.scalar(select(User).where(func.lower(User.email) == email))
        if user is None:
            if not dto.password:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="password is required for a new user")
            user = User(
                email=email,
                password_hash=hash_password(dto.password),
                first_name=dto.first_name,
                last_name=dto.last_name,
            )
            session.add(user)
            session.flush()

        membership = session.scalar(
            select(Membership).where(Membership.user_id == user.id, Membership.dealership_id == ctx.dealership_id)
        )
        if membership is None:
            membership = Membership(user_id=user.id, dealership_id=ctx.dealership_id, role=dto.role.value)
            session.add(membership)
        membership.role = dto.role.value
        membership.is_active = True
        session.commit()

        write_audit_log(
            session,
            action="membership.provisioned",
            entity_type="membership",
            entity_id=membership.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"user_id": str(user.id), "role": membership.role},
        )
        return _to_member(membership)

    def set_role(self, session: Session, ctx: AccessContext, user_id: uuid.UUID, role: TenantRole) -> TeamMemberRead:
        membership = self._get_membership(session, ctx.dealership_id, user_id)
        before = membership.role
        membership.role = role.value
        session.commit()

        write_audit_log(
            session,
            action="membership.role_changed",
            entity_type="membership",
            entity_id=membership.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"user_id": str(user_id), "from": before, "to": membership.role},
        )
        return _to_member(membership)

    def deactivate_member(self, session: Session, ctx: AccessContext, user_id: uuid.UUID) -> TeamMemberRead:
        if user_id == ctx.user_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot deactivate your own membership")
        membership = self._get_membership(session, ctx.dealership_id, user_id)
        membership.is_active = False
        session.commit()

        write_audit_log(
            session,
            action="membership.deactivated",
            entity_type="membership",
            entity_id=membership.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"user_id": str(user_id)},
        )
        return _to_member(membership)

    def create_invitation(self, session: Session, ctx: AccessContext, dto: InvitationCreate) -> InvitationRead:
        settings = get_settings()
        invitation = Invitation(
            dealership_id=ctx.dealership_id,
            email=str(dto.email).lower(),
            role=dto.role.value,
            token=secrets.token_urlsafe(32),
            invited_by_user_id=ctx.user_id,
            expires_at=utcnow() + timedelta(days=settings.invitation_ttl_days),
        )
        session.add(invitation)
        session.commit()

        write_audit_log(
            session,
            action="invitation.created",
            entity_type="invitation",
            entity_id=invitation.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"email": invitation.email, "role": invitation.role},
        )
        logger.info("invitation.created", extra={"action": "invitation.created", "user_id": str(ctx.user_id)})
        return InvitationRead.model_validate(invitation)

    def list_invitations(self, session: Session, ctx: AccessContext) -> list[InvitationRead]:
        invitations = session.scalars(
            select(Invitation)
            .where(Invitation.dealership_id == ctx.dealership_id)
            .order_by(Invitation.created_at.desc())
        ).all()
        return [InvitationRead.model_validate(item) for item in invitations]

    @staticmethod
    def _get(session: Session, dealership_id: uuid.UUID) -> Dealership:
        dealership = session.get(Dealership, dealership_id)
        if dealership is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="dealership not found")
        return dealership

    @staticmethod
    def _get_membership(session: Session, dealership_id: uuid.UUID, user_id: uuid.UUID) -> Membership:
        membership = session.scalar(
            select(Membership).where(Membership.dealership_id == dealership_id, Membership.user_id == user_id)
        )
        if membership is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="member not found")
        return membership

    @staticmethod
    def _to_settings(dealership: Dealership) -> DealershipSettingsRead:
        return DealershipSettingsRead(
            id=dealership.id,
            name=dealership.name,
            timezone=dealership.timezone,
            twilio_account_sid=dealership.twilio_account_sid,
            twilio_messaging_service_sid=dealership.twilio_messaging_service_sid,
            twilio_from_phone=dealership.twilio_from_phone,
            twilio_auth_token_configured=bool(dealership.twilio_auth_token),
        )


dealership_service = DealershipService()
