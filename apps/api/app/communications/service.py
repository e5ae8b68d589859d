from __future__ import annotations

import logging
import re
import uuid

from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.communications.models import (
    ConversationThread,
    Message,
    MessageChannel,
    MessageDirection,
    MessageStatus,
)
from app.communications.providers import SmsProvider
from app.communications.schemas import LogCallRequest, SendSmsRequest
from app.core.database import utcnow
from app.crm.models import Lead, LeadStatus
from app.crm.scoring import lead_scoring_service
from app.crm.service import emit_lead_created, get_lead
from app.dealerships.models import Dealership
from app.metrics import observe_sms
from app.platform.security.context import AccessContext
from app.services.audit import emit_event, write_audit_log


logger = logging.getLogger("app.communications")

E164_RE = re.compile(r"^\+[1-9]\d{7,14}$")


def map_provider_status(provider_status: str | None) -> MessageStatus:
    normalized = (provider_status or "").lower()
    if "deliver" in normalized and "undeliver" not in normalized:
        return MessageStatus.DELIVERED
    if "fail" in normalized or "undeliver" in normalized:
        return MessageStatus.FAILED
    return MessageStatus.SENT


def get_or_create_thread(session: Session, dealership_id: uuid.UUID, lead_id: uuid.UUID) -> ConversationThread:
    stmt = select(ConversationThread).where(
        ConversationThread.dealership_id == dealership_id,
        ConversationThread.lead_id == lead_id,
    )
    thread = session.scalar(stmt)
    if thread is not None:
        return thread

    thread = ConversationThread(dealership_id=dealership_id, lead_id=lead_id)
    session.add(thread)
    try:
        session.flush()
    except IntegrityError:
        # another request created it first
        session.rollback()
        thread = session.scalar(stmt)
        if thread is None:
            raise
    return thread


class CommunicationsService:
    def list_messages(self, session: Session, ctx: AccessContext, lead_id: uuid.UUID) -> list[Message]:
        lead = get_lead(session, ctx.dealership_id, lead_id)
        return list(
            session.scalars(
                select(Message)
                .where(Message.dealership_id == ctx.dealership_id, Message.lead_id == lead.id)
                .order_by(Message.created_at.desc())
            ).all()
        )

    def send_sms(
        self,
        session: Session,
        ctx: AccessContext,
        lead_id: uuid.UUID,
        dto: SendSmsRequest,
        provider: SmsProvider,
    ) -> Message:
        lead = get_lead(session, ctx.dealership_id, lead_id)
        to_phone = (dto.to_phone or lead.phone or "").strip()
        if not to_phone:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Lead is missing phone number for SMS")
        if not E164_RE.match(to_phone):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="SMS to_phone must be E.164 format")

        thread = get_or_create_thread(session, ctx.dealership_id, lead.id)
        message = Message(
            dealership_id=ctx.dealership_id,
            thread_id=thread.id,
            lead_id=lead.id,
            channel=MessageChannel.SMS.value,
            direction=MessageDirection.OUTBOUND.value,
            body=dto.body,
            status=MessageStatus.QUEUED.value,
            to_phone=to_phone,
            actor_user_id=ctx.user_id,
        )
        session.add(message)
        session.commit()

        dealership = session.get(Dealership, ctx.dealership_id)
        result = provider.send(dealership, to_phone, dto.body)  # type: ignore[arg-type]

        now = utcnow()
        message.status = MessageStatus.SENT.value if result.ok else MessageStatus.FAILED.value
        message.sent_at = now if result.ok else None
        message.provider_message_id = result.provider_message_id
        message.from_phone = result.from_phone
        message.error_code = result.error_code
        message.error_message = result.error_message
        thread.last_message_at = now
        lead.last_activity_at = now
        session.commit()
        observe_sms(MessageDirection.OUTBOUND.value, message.status)

        if not result.ok:
            logger.warning(
                "sms.send_failed",
                extra={"message_id": str(message.id), "provider": provider.name, "reason": result.error_code},
            )

        lead_scoring_service.recalculate_and_persist(session, lead)
        emit_event(
            session,
            dealership_id=ctx.dealership_id,
            event_type="sms_sent" if result.ok else "sms_failed",
            entity_type="message",
            entity_id=message.id,
            actor_user_id=ctx.user_id,
            payload={
                "lead_id": str(lead.id),
                "thread_id": str(thread.id),
                "provider_message_id": result.provider_message_id,
            },
        )
        write_audit_log(
            session,
            action="sms_sent",
            entity_type="message",
            entity_id=message.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"lead_id": str(lead.id), "status": message.status},
        )
        return message

    def log_call(self, session: Session, ctx: AccessContext, lead_id: uuid.UUID, dto: LogCallRequest) -> Message:
        lead = get_lead(session, ctx.dealership_id, lead_id)
        thread = get_or_create_thread(session, ctx.dealership_id, lead.id)
        now = utcnow()
        message = Message(
            dealership_id=ctx.dealership_id,
            thread_id=thread.id,
            lead_id=lead.id,
            channel=MessageChannel.CALL.value,
            direction=MessageDirection.OUTBOUND.value,
            body=dto.body or dto.outcome,
            status=MessageStatus.LOGGED.value,
            to_phone=lead.phone,
            call_duration_sec=dto.duration_sec,
            call_outcome=dto.outcome,
            actor_user_id=ctx.user_id,
            sent_at=now,
            created_at=now,
        )
        session.add(message)
        thread.last_message_at = now
        lead.last_activity_at = now
        session.commit()

        lead_scoring_service.recalculate_and_persist(session, lead)
        emit_event(
            session,
            dealership_id=ctx.dealership_id,
            event_type="call_logged",
            entity_type="message",
            entity_id=message.id,
            actor_user_id=ctx.user_id,
            payload={"lead_id": str(lead.id), "duration_sec": dto.duration_sec, "outcome": dto.outcome},
        )
        return message

    def find_dealership_by_routing(
        self,
        session: Session,
        *,
        to_phone: str | None,
        messaging_service_sid: str | None,
    ) -> Dealership | None:
        conditions = []
        if messaging_service_sid:
            conditions.append(Dealership.twilio_messaging_service_sid == messaging_service_sid)
        if to_phone:
            conditions.append(Dealership.twilio_from_phone == to_phone)
        if not conditions:
            return None
        return session.scalar(select(Dealership).where(Dealership.is_active.is_(True), or_(*conditions)).limit(1))

    def record_inbound_sms(
        self,
        session: Session,
        dealership: Dealership,
        *,
        from_phone: str,
        to_phone: str | None,
        provider_message_id: str | None,
        body: str,
    ) -> Message:
        lead = session.scalar(
            select(Lead).where(Lead.dealership_id == dealership.id, Lead.phone == from_phone).limit(1)
        )
        created = lead is None
        if lead is None:
            lead = Lead(dealership_id=dealership.id, phone=from_phone, status=LeadStatus.NEW.value, source="sms")
            session.add(lead)
            session.flush()

        thread = get_or_create_thread(session, dealership.id, lead.id)
        now = utcnow()
        message = Message(
            dealership_id=dealership.id,
            thread_id=thread.id,
            lead_id=lead.id,
            channel=MessageChannel.SMS.value,
            direction=MessageDirection.INBOUND.value,
            body=body,
            status=MessageStatus.RECEIVED.value,
            provider_message_id=provider_message_id,
            from_phone=from_phone,
            to_phone=to_phone,
            sent_at=now,
            created_at=now,
        )
        session.add(message)
        thread.last_message_at = now
        lead.last_activity_at = now
        session.commit()
        observe_sms(MessageDirection.INBOUND.value, message.status)

        lead_scoring_service.recalculate_and_persist(session, lead)
        if created:
            emit_lead_created(session, lead, actor_user_id=None)
        emit_event(
            session,
            dealership_id=dealership.id,
            event_type="sms_received",
            entity_type="message",
            entity_id=message.id,
            payload={"lead_id": str(lead.id), "thread_id": str(thread.id)},
        )
        logger.info("sms.inbound_recorded", extra={"message_id": str(message.id), "lead_id": str(lead.id)})
        return message

    def update_status(
        self,
        session: Session,
        *,
        provider_message_id: str | None,
        provider_status: str | None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> int:
        if not provider_message_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="MessageSid is required")

        mapped = map_provider_status(provider_status)
        messages = session.scalars(select(Message).where(Message.provider_message_id == provider_message_id)).all()
        for message in messages:
            message.status = mapped.value
            message.error_code = error_code
            message.error_message = error_message
        session.commit()
        if messages:
            observe_sms(MessageDirection.OUTBOUND.value, mapped.value)
        return len(messages)


communications_service = CommunicationsService()
