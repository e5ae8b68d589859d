from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Protocol

import httpx

from app.core.config import Settings, get_settings
from app.dealerships.models import Dealership


logger = logging.getLogger("app.communications.providers")

SENT = "SENT"
FAILED = "FAILED"


@dataclass(frozen=True)
class SmsSendResult:
    provider_message_id: str
    status: str
    from_phone: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == SENT


class SmsProvider(Protocol):
    name: str

    def send(self, dealership: Dealership, to: str, body: str) -> SmsSendResult:
        ...


class MockSmsProvider:
    name = "mock"

    def send(self, dealership: Dealership, to: str, body: str) -> SmsSendResult:
        return SmsSendResult(provider_message_id=f"mock-sms-{uuid.uuid4().hex[:16]}", status=SENT)


def _failed(prefix: str, code: str, message: str) -> SmsSendResult:
    return SmsSendResult(
        provider_message_id=f"{prefix}-{int(time.time() * 1000)}",
        status=FAILED,
        error_code=code,
        error_message=message,
    )


class TwilioSmsProvider:
    """Sends through the Twilio Messages REST endpoint.

    Dealership credentials win over the process-wide ones. Every failure comes
    back as a ``FAILED`` result so the caller can record it on the message.
    """

    name = "twilio"

    def __init__(self, settings: Settings | None = None, transport: httpx.BaseTransport | None = None) -> None:
        self.settings = settings or get_settings()
        self.transport = transport

    def send(self, dealership: Dealership, to: str, body: str) -> SmsSendResult:
        account_sid = dealership.twilio_account_sid or self.settings.twilio_account_sid
        auth_token = dealership.twilio_auth_token or self.settings.twilio_auth_token
        if not account_sid or not auth_token:
            return _failed(
                "twilio-missing-creds",
                "TWILIO_CONFIG_MISSING",
                "COMMUNICATIONS_MODE=twilio but Twilio credentials are missing",
            )

        messaging_service_sid = dealership.twilio_messaging_service_sid or self.settings.twilio_messaging_service_sid
        from_phone = dealership.twilio_from_phone or self.settings.twilio_from_number
        if not messaging_service_sid and not from_phone:
            return _failed(
                "twilio-missing-from",
                "TWILIO_SENDER_MISSING",
                "Dealership Twilio configuration missing messaging service SID and from phone",
            )

        form = {"To": to, "Body": body}
        if messaging_service_sid:
            form["MessagingServiceSid"] = messaging_service_sid
        else:
            form["From"] = from_phone  # type: ignore[assignment]

        url = f"{self.settings.twilio_api_base_url.rstrip('/')}/2010-04-01/Accounts/{account_sid}/Messages.json"
        try:
            with httpx.Client(timeout=self.settings.twilio_timeout_seconds, transport=self.transport) as client:
                response = client.post(url, data=form, auth=(account_sid, auth_token))
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("twilio_send_error", extra={"provider": self.name, "error": str(exc)})
            return _failed("twilio-failed", "TWILIO_SEND_FAILED", str(exc) or "Twilio message send failed")

        if response.is_error or not payload.get("sid"):
            code = payload.get("code")
            return _failed(
                "twilio-failed",
                str(code) if code else "TWILIO_SEND_FAILED",
                payload.get("message") or "Twilio message send failed",
            )

        return SmsSendResult(
            provider_message_id=payload["sid"],
            status=SENT,
            from_phone=payload.get("from") or from_phone,
        )


def build_sms_provider(settings: Settings | None = None) -> SmsProvider:
    settings = settings or get_settings()
    if settings.communications_mode == "twilio":
        return TwilioSmsProvider(settings)
    return MockSmsProvider()


def get_sms_provider() -> SmsProvider:
    return build_sms_provider()
