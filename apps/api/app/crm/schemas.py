from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from app.crm.models import ActivityType, LeadStatus, LeadType


class LeadCreate(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    status: LeadStatus = LeadStatus.NEW
    lead_type: LeadType = LeadType.GENERAL
    vehicle_interest: str | None = None
    source: str | None = None
    assigned_to_user_id: UUID | None = None

    @model_validator(mode="after")
    def require_contact(self) -> LeadCreate:
        if not self.email and not (self.phone and self.phone.strip()):
            raise ValueError("either email or phone is required")
        return self


class LeadUpdate(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    lead_type: LeadType | None = None
    vehicle_interest: str | None = None
    source: str | None = None


class LeadAssignRequest(BaseModel):
    assigned_to_user_id: UUID | None


class LeadStatusUpdate(BaseModel):
    status: LeadStatus


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    dealership_id: UUID
    first_name: str | None
    last_name: str | None
    email: str | None
    phone: str | None
    status: str
    lead_type: str
    vehicle_interest: str | None
    source: str | None
    assigned_to_user_id: UUID | None
    score: int
    score_updated_at: datetime | None
    last_activity_at: datetime | None
    sold_at: datetime | None
    created_at: datetime
    updated_at: datetime


class LeadScoreRead(BaseModel):
    score: int
    breakdown: dict[str, Any]
    reasons: list[str]


class AssignableUser(BaseModel):
    id: UUID
    first_name: str | None
    last_name: str | None
    email: str
    role: str


class LeadOptionsRead(BaseModel):
    statuses: list[str]
    lead_types: list[str]
    assignable_users: list[AssignableUser]


class ActivityCreate(BaseModel):
    type: ActivityType
    subject: str | None = None
    body: str | None = None
    outcome: str | None = None


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID
    type: str
    subject: str | None
    body: str | None
    outcome: str | None
    created_by_user_id: UUID | None
    created_at: datetime


class AppointmentCreate(BaseModel):
    lead_id: UUID
    start_at: datetime
    end_at: datetime
    note: str | None = None

    @model_validator(mode="after")
    def check_window(self) -> AppointmentCreate:
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class AppointmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID
    start_at: datetime
    end_at: datetime
    status: str
    note: str | None
    created_by_user_id: UUID | None
    created_at: datetime
    updated_at: datetime


class TaskCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None
    lead_id: UUID | None = None
    due_at: datetime | None = None
    assigned_to_user_id: UUID | None = None


class TaskSnoozeRequest(BaseModel):
    snoozed_until: datetime


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID | None
    title: str
    description: str | None
    status: str
    due_at: datetime | None
    snoozed_until: datetime | None
    completed_at: datetime | None
    assigned_to_user_id: UUID | None
    created_by_user_id: UUID | None
    created_at: datetime
    updated_at: datetime


class TimelineItem(BaseModel):
    id: UUID
    type: Literal["MESSAGE", "ACTIVITY", "TASK", "APPOINTMENT"]
    occurred_at: datetime
    payload: dict[str, Any]


class TimelinePage(BaseModel):
    items: list[TimelineItem]
    next_cursor: str | None
