from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    # unknown or malformed addresses both fail as bad credentials
    email: str
    password: str = Field(min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class MembershipSummary(BaseModel):
    dealership_id: UUID
    dealership_name: str
    dealership_slug: str
    role: str


class MeRead(BaseModel):
    id: UUID
    email: str
    first_name: str | None
    last_name: str | None
    phone: str | None
    is_platform_admin: bool
    is_platform_operator: bool
    platform_role: str
    dealerships: list[MembershipSummary] = Field(default_factory=list)


class InvitationLookupRead(BaseModel):
    email: str
    role: str
    dealership_name: str
    expires_at: datetime
    status: str


class AcceptInvitationRequest(BaseModel):
    token: str = Field(min_length=1)
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    password: str = Field(min_length=8)
