from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SendSmsRequest(BaseModel):
    body: str = Field(min_length=1)
    to_phone: str | None = None


class LogCallRequest(BaseModel):
    outcome: str = Field(min_length=1, max_length=200)
    body: str | None = None
    duration_sec: int | None = Field(default=None, ge=0)


class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    thread_id: UUID
    lead_id: UUID
    channel: str
    direction: str
    body: str | None
    status: str
    provider_message_id: str | None
    error_code: str | None
    error_message: str | None
    from_phone: str | None
    to_phone: str | None
    call_duration_sec: int | None
    call_outcome: str | None
    actor_user_id: UUID | None
    sent_at: datetime | None
    created_at: datetime


class WebhookAck(BaseModel):
    ok: bool = True
