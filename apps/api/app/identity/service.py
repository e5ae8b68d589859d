from __future__ import annotations

import logging
import uuid

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.core.database import as_utc, utcnow
from app.core.security import (
    TokenError,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_password,
    hash_token,
    token_hash_matches,
    verify_password,
)
from app.dealerships.models import Invitation, Membership
from app.identity.models import User
from app.identity.schemas import (
    AcceptInvitationRequest,
    InvitationLookupRead,
    MeRead,
    MembershipSummary,
    TokenPair,
)
from app.metrics import observe_auth_failure
from app.services.audit import write_audit_log


logger = logging.getLogger("app.identity")


class AuthService:
    invalid_credentials_detail = "Invalid email or password"
    invalid_refresh_detail = "Invalid refresh token"

    def login(self, session: Session, email: str, password: str) -> TokenPair:
        user = self._find_by_email(session, email)
        if user is None or not user.is_active or not verify_password(password, user.password_hash):
            observe_auth_failure("bad_credentials")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=self.invalid_credentials_detail)

        tokens = self._issue_tokens(session, user)
        logger.info("auth.login", extra={"user_id": str(user.id)})
        return tokens

    def refresh(self, session: Session, refresh_token: str) -> TokenPair:
        try:
            payload = decode_refresh_token(refresh_token)
            user_id = uuid.UUID(str(payload["sub"]))
        except (TokenError, ValueError):
            observe_auth_failure("invalid_refresh")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=self.invalid_refresh_detail) from None

        user = session.get(User, user_id)
        if user is None or not user.is_active or not token_hash_matches(refresh_token, user.refresh_token_hash):
            observe_auth_failure("refresh_replay")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=self.invalid_refresh_detail)

        return self._issue_tokens(session, user)

    def logout(self, session: Session, user_id: uuid.UUID) -> None:
        user = session.get(User, user_id)
        if user is None:
            return
        user.refresh_token_hash = None
        session.commit()
        logger.info("auth.logout", extra={"user_id": str(user_id)})

    def me(self, session: Session, user_id: uuid.UUID) -> MeRead:
        user = session.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

        memberships = session.scalars(
            select(Membership)
            .options(selectinload(Membership.dealership))
            .where(Membership.user_id == user.id, Membership.is_active.is_(True))
        ).all()
        summaries = sorted(
            (
                MembershipSummary(
                    dealership_id=item.dealership_id,
                    dealership_name=item.dealership.name,
                    dealership_slug=item.dealership.slug,
                    role=item.role,
                )
                for item in memberships
            ),
            key=lambda summary: summary.dealership_name.lower(),
        )
        platform_role = "ADMIN" if user.is_platform_admin else "OPERATOR" if user.is_platform_operator else "NONE"
        return MeRead(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            phone=user.phone,
            is_platform_admin=user.is_platform_admin,
            is_platform_operator=user.is_platform_operator,
            platform_role=platform_role,
            dealerships=summaries,
        )

    def get_invitation(self, session: Session, token: str) -> InvitationLookupRead:
        invitation = session.scalar(
            select(Invitation).options(selectinload(Invitation.dealership)).where(Invitation.token == token)
        )
        if invitation is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation not found")

        expires_at = as_utc(invitation.expires_at)
        invitation_status = invitation.status
        if invitation_status == "PENDING" and expires_at is not None and expires_at <= utcnow():
            invitation_status = "EXPIRED"
        return InvitationLookupRead(
            email=invitation.email,
            role=invitation.role,
            dealership_name=invitation.dealership.name,
            expires_at=expires_at,
            status=invitation_status,
        )

    def accept_invitation(self, session: Session, dto: AcceptInvitationRequest) -> TokenPair:
        invitation = session.scalar(select(Invitation).where(Invitation.token == dto.token))
        if invitation is None or invitation.status != "PENDING":
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation is invalid")

        expires_at = as_utc(invitation.expires_at)
        if expires_at is not None and expires_at <= utcnow():
            invitation.status = "EXPIRED"
            session.commit()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invitation has expired")

        user = self._find_by_email(session, invitation.email)
        if user is None:
            user = User(email=invitation.email.lower())
            session.add(user)
        user.password_hash = hash_password(dto.password)
        user.first_name = dto.first_name
        user.last_name = dto.last_name
        session.flush()

        membership = session.scalar(
            select(Membership).where(
                Membership.user_id == user.id,
                Membership.dealership_id == invitation.dealership_id,
            )
        )
        if membership is None:
            membership = Membership(user_id=user.id, dealership_id=invitation.dealership_id, role=invitation.role)
            session.add(membership)
        membership.role = invitation.role
        membership.is_active = True

        invitation.status = "ACCEPTED"
        invitation.accepted_at = utcnow()
        tokens = self._issue_tokens(session, user)

        write_audit_log(
            session,
            action="invitation.accepted",
            entity_type="invitation",
            entity_id=invitation.id,
            dealership_id=invitation.dealership_id,
            actor_user_id=user.id,
            metadata={"role": invitation.role, "email": invitation.email},
        )
        return tokens

    def _issue_tokens(self, session: Session, user: User) -> TokenPair:
        access_token = create_access_token(
            user_id=user.id,
            email=user.email,
            is_platform_admin=user.is_platform_admin,
            is_platform_operator=user.is_platform_operator,
        )
        refresh_token = create_refresh_token(user_id=user.id)
        user.refresh_token_hash = hash_token(refresh_token)
        session.commit()
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    @staticmethod
    def _find_by_email(session: Session, email: str) -> User | None:
        return session.scalar(select(User).where(func.lower(User.email) == email.strip().lower()))


auth_service = AuthService()
