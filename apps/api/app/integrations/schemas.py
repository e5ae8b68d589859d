from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.integrations.models import IntegrationProvider


class IntegrationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    provider: IntegrationProvider = IntegrationProvider.GENERIC
    webhook_secret: str | None = Field(default=None, min_length=16, max_length=128)
    is_active: bool = True


class IntegrationUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    is_active: bool | None = None


class IntegrationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    provider: str
    is_active: bool
    created_at: datetime


class IntegrationCreated(IntegrationRead):
    webhook_secret: str


class CsvImportRequest(BaseModel):
    csv: str = Field(min_length=1)
    integration_id: UUID | None = None
    source: str | None = None


class RowError(BaseModel):
    field: str
    message: str


class ImportSuccess(BaseModel):
    row: int
    lead_id: UUID
    email: str | None = None
    phone: str | None = None


class ImportFailure(BaseModel):
    row: int
    raw: dict[str, str]
    errors: list[RowError]


class CsvImportResult(BaseModel):
    total_rows: int
    success_count: int
    failure_count: int
    successes: list[ImportSuccess] = Field(default_factory=list)
    failures: list[ImportFailure] = Field(default_factory=list)


class WebhookResult(BaseModel):
    ok: bool
    integration_event_id: UUID
    lead_id: UUID | None = None
    error: str | None = None


class IntegrationEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    integration_id: UUID | None
    channel: str
    provider: str
    parsed_ok: bool
    parsed_payload: dict[str, Any] | None
    error: str | None
    lead_id: UUID | None
    received_at: datetime
    processed_at: datetime | None
