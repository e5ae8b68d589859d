from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class PeriodCounts(BaseModel):
    leads: int = 0
    appointments: int = 0
    shows: int = 0
    sold: int = 0


class OverviewRead(BaseModel):
    today: PeriodCounts
    week: PeriodCounts
    month: PeriodCounts


class BreakdownRow(BaseModel):
    key: str | None
    leads: int


class BreakdownRead(BaseModel):
    dimension: str
    start: datetime | None
    end: datetime | None
    rows: list[BreakdownRow]


class ResponseTimeRead(BaseModel):
    average_minutes: float | None
    sample_size: int


class EventLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    actor_user_id: UUID | None
    event_type: str
    entity_type: str
    entity_id: str | None
    payload: dict[str, Any]
    correlation_id: str | None
    occurred_at: datetime
