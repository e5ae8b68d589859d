from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.platform.security.context import TenantRole


class DealershipCreate(BaseModel):
    name: str = Field(min_length=1)
    slug: str = Field(min_length=1, pattern=r"^[a-z0-9][a-z0-9-]*$")
    timezone: str = "America/New_York"
    twilio_messaging_service_sid: str | None = None
    twilio_from_phone: str | None = None


class DealershipRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str
    timezone: str
    is_active: bool
    created_at: datetime


class DealershipSettingsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    timezone: str
    twilio_account_sid: str | None
    twilio_messaging_service_sid: str | None
    twilio_from_phone: str | None
    twilio_auth_token_configured: bool = False


class DealershipSettingsUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    timezone: str | None = None
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_messaging_service_sid: str | None = None
    twilio_from_phone: str | None = Field(default=None, pattern=r"^\+[1-9]\d{7,14}$")


class TeamMemberRead(BaseModel):
    membership_id: UUID
    user_id: UUID
    email: str
    first_name: str | None
    last_name: str | None
    role: str
    is_active: bool


class MembershipProvision(BaseModel):
    email: EmailStr
    role: TenantRole
    first_name: str | None = None
    last_name: str | None = None
    password: str | None = Field(default=None, min_length=8)


class MembershipRoleUpdate(BaseModel):
    role: TenantRole


class InvitationCreate(BaseModel):
    email: EmailStr
    role: TenantRole


class InvitationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    role: str
    status: str
    token: str
    expires_at: datetime
    created_at: datetime
