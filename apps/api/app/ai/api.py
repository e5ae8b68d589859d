from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.ai.jobs import JobQueue, get_job_queue
from app.ai.schemas import (
    AiLeadRequest,
    DraftFollowupRequest,
    FollowupDraftRead,
    LeadScoreAdviceRead,
    LeadSummaryRead,
    NextBestActionRead,
)
from app.ai.service import ai_service
from app.core.database import get_db
from app.platform.security.context import AccessContext
from app.platform.security.policies import secured


router = APIRouter(prefix="/api/ai", tags=["ai"])

member = secured()


@router.post("/lead/summary", response_model=LeadSummaryRead)
def lead_summary(
    dto: AiLeadRequest,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
    queue: JobQueue = Depends(get_job_queue),
) -> LeadSummaryRead:
    return ai_service.lead_summary(db, ctx, dto.lead_id, queue)


@router.post("/lead/score", response_model=LeadScoreAdviceRead)
def lead_score(
    dto: AiLeadRequest,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
    queue: JobQueue = Depends(get_job_queue),
) -> LeadScoreAdviceRead:
    return ai_service.lead_score(db, ctx, dto.lead_id, queue)


@router.post("/lead/draft-followup", response_model=FollowupDraftRead)
def draft_followup(
    dto: DraftFollowupRequest,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
    queue: JobQueue = Depends(get_job_queue),
) -> FollowupDraftRead:
    return ai_service.draft_followup(
        db,
        ctx,
        dto.lead_id,
        queue,
        channel=dto.channel,
        tone=dto.tone,
        instruction=dto.instruction,
    )


@router.post("/next-best-action", response_model=NextBestActionRead)
def next_best_action(
    dto: AiLeadRequest,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
    queue: JobQueue = Depends(get_job_queue),
) -> NextBestActionRead:
    return ai_service.next_best_action(db, ctx, dto.lead_id, queue)
