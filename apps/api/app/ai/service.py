from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.ai.advisor import ActivitySummary, DraftChannel, DraftTone, LeadContext, RulesAdvisor, rules_advisor
from app.ai.jobs import JobQueue
from app.ai.models import AiRequestLog
from app.ai.schemas import FollowupDraftRead, LeadScoreAdviceRead, LeadSummaryRead, NextBestActionRead
from app.core.database import as_utc, utcnow
from app.crm.models import Activity
from app.crm.scoring import lead_scoring_service
from app.crm.service import get_lead
from app.metrics import observe_auxiliary_write_failure
from app.platform.security.context import AccessContext
from app.platform.security.redaction import redact_json
from app.services.audit import write_audit_log


logger = logging.getLogger("app.ai")

LATEST_ACTIVITY_LIMIT = 5


class AiService:
    def __init__(self, advisor: RulesAdvisor = rules_advisor) -> None:
        self.advisor = advisor

    def lead_summary(self, session: Session, ctx: AccessContext, lead_id: uuid.UUID, queue: JobQueue) -> LeadSummaryRead:
        context = self.load_context(session, ctx.dealership_id, lead_id)
        summary = self.advisor.summary(context)
        self._record(session, ctx, queue, "lead_summary", lead_id, {"lead_id": str(lead_id)}, {"summary": summary})
        return LeadSummaryRead(lead_id=lead_id, summary=summary)

    def lead_score(self, session: Session, ctx: AccessContext, lead_id: uuid.UUID, queue: JobQueue) -> LeadScoreAdviceRead:
        lead = get_lead(session, ctx.dealership_id, lead_id)
        result = lead_scoring_service.compute(session, lead).as_dict()
        self._record(session, ctx, queue, "lead_score", lead_id, {"lead_id": str(lead_id)}, result)
        return LeadScoreAdviceRead(lead_id=lead_id, **result)  # type: ignore[arg-type]

    def next_best_action(
        self,
        session: Session,
        ctx: AccessContext,
        lead_id: uuid.UUID,
        queue: JobQueue,
    ) -> NextBestActionRead:
        context = self.load_context(session, ctx.dealership_id, lead_id)
        action = self.advisor.next_best_action(context)
        response = {"action": action.action, "rationale": action.rationale}
        self._record(session, ctx, queue, "next_best_action", lead_id, {"lead_id": str(lead_id)}, response)
        return NextBestActionRead(lead_id=lead_id, **response)

    def draft_followup(
        self,
        session: Session,
        ctx: AccessContext,
        lead_id: uuid.UUID,
        queue: JobQueue,
        *,
        channel: DraftChannel = DraftChannel.EMAIL,
        tone: DraftTone = DraftTone.FRIENDLY,
        instruction: str | None = None,
    ) -> FollowupDraftRead:
        context = self.load_context(session, ctx.dealership_id, lead_id)
        draft = self.advisor.draft(context, channel, tone, instruction)
        request_payload = {
            "lead_id": str(lead_id),
            "channel": channel.value,
            "tone": tone.value,
            "instruction": instruction,
        }
        response = {"channel": draft.channel.value, "tone": draft.tone.value, "message": draft.message}
        self._record(session, ctx, queue, "draft_followup", lead_id, request_payload, response, enqueue=False)
        return FollowupDraftRead(lead_id=lead_id, channel=draft.channel, tone=draft.tone, message=draft.message)

    def load_context(self, session: Session, dealership_id: uuid.UUID, lead_id: uuid.UUID) -> LeadContext:
        lead = get_lead(session, dealership_id, lead_id)
        activity_filter = (Activity.dealership_id == dealership_id, Activity.lead_id == lead.id)
        activity_count = int(session.scalar(select(func.count(Activity.id)).where(*activity_filter)) or 0)
        latest = session.scalars(
            select(Activity).where(*activity_filter).order_by(Activity.created_at.desc()).limit(LATEST_ACTIVITY_LIMIT)
        ).all()
        return LeadContext(
            id=str(lead.id),
            status=lead.status,
            first_name=lead.first_name,
            last_name=lead.last_name,
            email=lead.email,
            phone=lead.phone,
            vehicle_interest=lead.vehicle_interest,
            source=lead.source,
            last_activity_at=as_utc(lead.last_activity_at),
            activity_count=activity_count,
            latest_activities=[
                ActivitySummary(type=item.type, subject=item.subject, created_at=as_utc(item.created_at))  # type: ignore[arg-type]
                for item in latest
            ],
        )

    def _record(
        self,
        session: Session,
        ctx: AccessContext,
        queue: JobQueue,
        feature: str,
        lead_id: uuid.UUID,
        request_payload: dict[str, Any],
        response_payload: dict[str, Any],
        *,
        enqueue: bool = True,
    ) -> None:
        if enqueue:
            self._enqueue(queue, feature, ctx.dealership_id, lead_id, request_payload)
        self._log_request(session, ctx, feature, lead_id, request_payload, response_payload)
        write_audit_log(
            session,
            action="ai_action_invoked",
            entity_type="lead",
            entity_id=lead_id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"feature": feature},
        )

    @staticmethod
    def _enqueue(
        queue: JobQueue,
        feature: str,
        dealership_id: uuid.UUID,
        lead_id: uuid.UUID,
        payload: dict[str, Any],
    ) -> None:
        job = {
            "feature": feature,
            "dealership_id": str(dealership_id),
            "lead_id": str(lead_id),
            "payload": redact_json(payload),
            "queued_at": utcnow().isoformat(),
        }
        try:
            queue.enqueue(feature, job)
        except Exception as exc:
            observe_auxiliary_write_failure("job_queue")
            logger.warning("ai_job.enqueue_failed", extra={"job_name": feature, "error": str(exc)})

    @staticmethod
    def _log_request(
        session: Session,
        ctx: AccessContext,
        feature: str,
        lead_id: uuid.UUID,
        request_payload: dict[str, Any],
        response_payload: dict[str, Any],
    ) -> None:
        session.add(
            AiRequestLog(
                dealership_id=ctx.dealership_id,
                user_id=ctx.user_id,
                lead_id=lead_id,
                feature=feature,
                request_payload=redact_json(request_payload),
                response_payload=redact_json(response_payload),
            )
        )
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            observe_auxiliary_write_failure("ai_request_log")
            logger.warning("ai_request_log.write_failed", extra={"feature": feature, "error": str(exc)})


ai_service = AiService()
