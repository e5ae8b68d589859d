from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.communications.providers import SmsProvider, get_sms_provider
from app.communications.schemas import LogCallRequest, MessageRead, SendSmsRequest, WebhookAck
from app.communications.service import communications_service
from app.communications.signatures import verify_twilio_signature
from app.core.config import get_settings
from app.core.database import get_db
from app.platform.security.context import AccessContext
from app.platform.security.policies import secured


logger = logging.getLogger("app.communications")

router = APIRouter(prefix="/api/communications", tags=["communications"])
twilio_router = APIRouter(prefix="/api/communications/twilio", tags=["communications.webhooks"])

member = secured()


@router.get("/leads/{lead_id}/messages", response_model=list[MessageRead])
def list_messages(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> list[MessageRead]:
    return [MessageRead.model_validate(row) for row in communications_service.list_messages(db, ctx, lead_id)]


@router.post("/leads/{lead_id}/sms", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
def send_sms(
    lead_id: uuid.UUID,
    dto: SendSmsRequest,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
    provider: SmsProvider = Depends(get_sms_provider),
) -> MessageRead:
    return MessageRead.model_validate(communications_service.send_sms(db, ctx, lead_id, dto, provider))


@router.post("/leads/{lead_id}/calls", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
def log_call(
    lead_id: uuid.UUID,
    dto: LogCallRequest,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> MessageRead:
    return MessageRead.model_validate(communications_service.log_call(db, ctx, lead_id, dto))


def _public_url(request: Request) -> str:
    base = get_settings().webhook_public_base_url
    if not base:
        return str(request.url)
    url = base.rstrip("/") + request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return url


async def verified_twilio_form(
    request: Request,
    signature: str | None = Header(default=None, alias="x-twilio-signature"),
) -> dict[str, str]:
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}
    if not verify_twilio_signature(get_settings().twilio_webhook_auth_token, _public_url(request), params, signature):
        logger.warning("twilio.signature_rejected", extra={"path": request.url.path})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Twilio webhook signature")
    return params


@twilio_router.post("/inbound", response_model=WebhookAck)
def twilio_inbound(
    params: dict[str, str] = Depends(verified_twilio_form),
    db: Session = Depends(get_db),
) -> WebhookAck:
    to_phone = params.get("To")
    dealership = communications_service.find_dealership_by_routing(
        db,
        to_phone=to_phone,
        messaging_service_sid=params.get("MessagingServiceSid"),
    )
    if dealership is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unable to route inbound SMS to dealership")
    from_phone = (params.get("From") or "").strip()
    if not from_phone:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="From is required")

    communications_service.record_inbound_sms(
        db,
        dealership,
        from_phone=from_phone,
        to_phone=to_phone,
        provider_message_id=params.get("MessageSid"),
        body=params.get("Body", ""),
    )
    return WebhookAck()


@twilio_router.post("/status", response_model=WebhookAck)
def twilio_status(
    params: dict[str, str] = Depends(verified_twilio_form),
    db: Session = Depends(get_db),
) -> WebhookAck:
    communications_service.update_status(
        db,
        provider_message_id=params.get("MessageSid"),
        provider_status=params.get("MessageStatus"),
        error_code=params.get("ErrorCode"),
        error_message=params.get("ErrorMessage"),
    )
    return WebhookAck()
