from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.ai.advisor import DraftChannel, DraftTone


class AiLeadRequest(BaseModel):
    lead_id: UUID


class DraftFollowupRequest(AiLeadRequest):
    channel: DraftChannel = DraftChannel.EMAIL
    tone: DraftTone = DraftTone.FRIENDLY
    instruction: str | None = Field(default=None, max_length=300)

    @field_validator("instruction")
    @classmethod
    def blank_instruction(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class LeadSummaryRead(BaseModel):
    lead_id: UUID
    summary: str


class LeadScoreAdviceRead(BaseModel):
    lead_id: UUID
    score: int
    breakdown: dict[str, Any]
    reasons: list[str]


class NextBestActionRead(BaseModel):
    lead_id: UUID
    action: str
    rationale: str


class FollowupDraftRead(BaseModel):
    lead_id: UUID
    channel: DraftChannel
    tone: DraftTone
    message: str
