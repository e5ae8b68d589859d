from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.core.security import create_access_token, hash_password
from app.dealerships.models import Dealership, Membership
from app.identity.models import User
from app.platform.security.context import TenantRole


DEFAULT_PASSWORD = "password123"


@dataclass
class Seeder:
    session: Session

    def user(
        self,
        email: str,
        *,
        password: str = DEFAULT_PASSWORD,
        first_name: str | None = None,
        last_name: str | None = None,
        platform_admin: bool = False,
        platform_operator: bool = False,
    ) -> User:
        user = User(
            email=email,
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            is_platform_admin=platform_admin,
            is_platform_operator=platform_operator,
        )
        self.session.add(user)
        self.session.commit()
        return user

    def dealership(self, slug: str, **fields: object) -> Dealership:
        dealership = Dealership(name=fields.pop("name", slug.title()), slug=slug, **fields)
        self.session.add(dealership)
        self.session.commit()
        return dealership

    def member(
        self,
        user: User,
        dealership: Dealership,
        role: TenantRole = TenantRole.SALES,
        *,
        active: bool = True,
    ) -> Membership:
        membership = Membership(user_id=user.id, dealership_id=dealership.id, role=role.value, is_active=active)
        self.session.add(membership)
        self.session.commit()
        return membership

    @staticmethod
    def headers(user: User, dealership: Dealership | uuid.UUID | None = None) -> dict[str, str]:
        token = create_access_token(
            user_id=user.id,
            email=user.email,
            is_platform_admin=user.is_platform_admin,
            is_platform_operator=user.is_platform_operator,
        )
        headers = {"Authorization": f"Bearer {token}"}
        if dealership is not None:
            dealership_id = dealership.id if isinstance(dealership, Dealership) else dealership
            headers["x-dealership-id"] = str(dealership_id)
        return headers
