from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.communications.models import Message
from app.communications.providers import FAILED, SmsSendResult, TwilioSmsProvider, get_sms_provider
from app.communications.service import map_provider_status
from app.communications.signatures import compute_twilio_signature, verify_twilio_signature
from app.core.config import Settings, get_settings
from app.crm.models import Lead
from app.dealerships.models import Dealership
from app.main import app
from app.models.audit import EventLog
from app.platform.security.context import TenantRole
from tests.factories import Seeder


WEBHOOK_TOKEN = "twilio-webhook-token"
INBOUND_URL = "http://testserver/api/communications/twilio/inbound"
STATUS_URL = "http://testserver/api/communications/twilio/status"


class FailingSmsProvider:
    name = "failing"

    def send(self, dealership: Dealership, to: str, body: str) -> SmsSendResult:
        return SmsSendResult(
            provider_message_id="failing-1",
            status=FAILED,
            error_code="TWILIO_SEND_FAILED",
            error_message="carrier rejected",
        )


@pytest.fixture()
def sales_desk(seed: Seeder, db_session: Session) -> tuple[dict[str, str], Lead, Dealership]:
    dealership = seed.dealership("d-1", twilio_from_phone="+15550001111")
    user = seed.user("sales@d1.test")
    seed.member(user, dealership, TenantRole.SALES)
    lead = Lead(dealership_id=dealership.id, first_name="Pat", phone="+15551234567")
    db_session.add(lead)
    db_session.commit()
    return seed.headers(user, dealership), lead, dealership


@pytest.fixture()
def webhook_token(monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setenv("TWILIO_WEBHOOK_AUTH_TOKEN", WEBHOOK_TOKEN)
    get_settings.cache_clear()
    return WEBHOOK_TOKEN


def _signed(url: str, params: dict[str, str]) -> dict[str, str]:
    return {"x-twilio-signature": compute_twilio_signature(WEBHOOK_TOKEN, url, params)}


def test_send_sms_with_mock_provider(client: TestClient, sales_desk: tuple, db_session: Session) -> None:
    headers, lead, _ = sales_desk
    before = lead.score

    response = client.post(f"/api/communications/leads/{lead.id}/sms", json={"body": "Hi Pat"}, headers=headers)

    assert response.status_code == 201, response.text
    message = response.json()
    assert message["status"] == "SENT"
    assert message["direction"] == "OUTBOUND"
    assert message["to_phone"] == "+15551234567"
    assert message["provider_message_id"].startswith("mock-sms-")

    db_session.refresh(lead)
    assert lead.score > before
    assert lead.last_activity_at is not None
    assert db_session.scalars(select(EventLog).where(EventLog.event_type == "sms_sent")).one()

    listed = client.get(f"/api/communications/leads/{lead.id}/messages", headers=headers).json()
    assert [item["id"] for item in listed] == [message["id"]]


def test_failed_provider_result_is_recorded(client: TestClient, sales_desk: tuple, db_session: Session) -> None:
    headers, lead, _ = sales_desk
    app.dependency_overrides[get_sms_provider] = lambda: FailingSmsProvider()

    response = client.post(f"/api/communications/leads/{lead.id}/sms", json={"body": "Hello"}, headers=headers)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "FAILED"
    assert body["error_code"] == "TWILIO_SEND_FAILED"
    assert body["sent_at"] is None
    assert db_session.scalars(select(EventLog).where(EventLog.event_type == "sms_failed")).one()


def test_sms_requires_e164_destination(client: TestClient, sales_desk: tuple, seed: Seeder, db_session: Session) -> None:
    headers, lead, dealership = sales_desk
    no_phone = Lead(dealership_id=dealership.id, email="nophone@example.com")
    db_session.add(no_phone)
    db_session.commit()

    missing = client.post(f"/api/communications/leads/{no_phone.id}/sms", json={"body": "Hi"}, headers=headers)
    bad_format = client.post(
        f"/api/communications/leads/{lead.id}/sms",
        json={"body": "Hi", "to_phone": "555-123-4567"},
        headers=headers,
    )

    assert missing.status_code == 400
    assert missing.json()["detail"] == "Lead is missing phone number for SMS"
    assert bad_format.status_code == 400
    assert bad_format.json()["detail"] == "SMS to_phone must be E.164 format"
    assert db_session.scalars(select(Message)).all() == []


def test_log_call_counts_toward_engagement(client: TestClient, sales_desk: tuple, db_session: Session) -> None:
    headers, lead, _ = sales_desk

    response = client.post(
        f"/api/communications/leads/{lead.id}/calls",
        json={"outcome": "Left voicemail", "duration_sec": 42},
        headers=headers,
    )

    assert response.status_code == 201
    call = response.json()
    assert call["channel"] == "CALL"
    assert call["status"] == "LOGGED"
    assert call["call_duration_sec"] == 42
    assert call["body"] == "Left voicemail"
    event = db_session.scalars(select(EventLog).where(EventLog.event_type == "call_logged")).one()
    assert event.payload["duration_sec"] == 42


def test_inbound_sms_matches_existing_lead(
    client: TestClient, sales_desk: tuple, webhook_token: str, db_session: Session
) -> None:
    _, lead, _ = sales_desk
    params = {"From": "+15551234567", "To": "+15550001111", "Body": "Is it still available?", "MessageSid": "SM1"}

    response = client.post("/api/communications/twilio/inbound", data=params, headers=_signed(INBOUND_URL, params))

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    message = db_session.scalars(select(Message)).one()
    assert message.lead_id == lead.id
    assert message.direction == "INBOUND"
    assert message.status == "RECEIVED"
    assert len(db_session.scalars(select(Lead)).all()) == 1


def test_inbound_sms_from_unknown_number_creates_lead(
    client: TestClient, sales_desk: tuple, webhook_token: str, db_session: Session
) -> None:
    _, _, dealership = sales_desk
    params = {"From": "+15559998888", "To": "+15550001111", "Body": "Hi", "MessageSid": "SM2"}

    response = client.post("/api/communications/twilio/inbound", data=params, headers=_signed(INBOUND_URL, params))

    assert response.status_code == 200
    created = db_session.scalars(select(Lead).where(Lead.phone == "+15559998888")).one()
    assert created.dealership_id == dealership.id
    assert created.source == "sms"
    event_types = set(db_session.scalars(select(EventLog.event_type)).all())
    assert {"lead_created", "sms_received"} <= event_types


def test_inbound_sms_rejects_bad_signature_and_unroutable_numbers(
    client: TestClient, sales_desk: tuple, webhook_token: str, db_session: Session
) -> None:
    params = {"From": "+15551234567", "To": "+15550001111", "Body": "Hi", "MessageSid": "SM3"}

    unsigned = client.post("/api/communications/twilio/inbound", data=params)
    tampered = client.post(
        "/api/communications/twilio/inbound",
        data={**params, "Body": "changed"},
        headers=_signed(INBOUND_URL, params),
    )
    assert unsigned.status_code == 400
    assert tampered.status_code == 400
    assert tampered.json()["detail"] == "Invalid Twilio webhook signature"

    elsewhere = {**params, "To": "+15550002222"}
    unroutable = client.post("/api/communications/twilio/inbound", data=elsewhere, headers=_signed(INBOUND_URL, elsewhere))
    assert unroutable.status_code == 400
    assert unroutable.json()["detail"] == "Unable to route inbound SMS to dealership"
    assert db_session.scalars(select(Message)).all() == []


def test_webhooks_fail_closed_without_configured_token(client: TestClient, sales_desk: tuple) -> None:
    params = {"From": "+15551234567", "To": "+15550001111", "Body": "Hi", "MessageSid": "SM4"}

    response = client.post("/api/communications/twilio/inbound", data=params, headers=_signed(INBOUND_URL, params))

    assert response.status_code == 400


def test_status_callback_updates_outbound_message(
    client: TestClient, sales_desk: tuple, webhook_token: str, db_session: Session
) -> None:
    headers, lead, _ = sales_desk
    sent = client.post(f"/api/communications/leads/{lead.id}/sms", json={"body": "Hi"}, headers=headers).json()

    params = {"MessageSid": sent["provider_message_id"], "MessageStatus": "delivered"}
    response = client.post("/api/communications/twilio/status", data=params, headers=_signed(STATUS_URL, params))
    assert response.status_code == 200

    failed = {"MessageSid": sent["provider_message_id"], "MessageStatus": "undelivered", "ErrorCode": "30003"}
    client.post("/api/communications/twilio/status", data=failed, headers=_signed(STATUS_URL, failed))

    message = db_session.scalars(select(Message)).one()
    db_session.refresh(message)
    assert message.status == "FAILED"
    assert message.error_code == "30003"


@pytest.mark.parametrize(
    ("provider_status", "expected"),
    [("delivered", "DELIVERED"), ("undelivered", "FAILED"), ("failed", "FAILED"), ("sent", "SENT"), (None, "SENT")],
)
def test_map_provider_status(provider_status: str | None, expected: str) -> None:
    assert map_provider_status(provider_status).value == expected


def test_signature_roundtrip_is_order_independent() -> None:
    params = {"b": "2", "a": "1"}
    signature = compute_twilio_signature("secret", INBOUND_URL, params)

    assert verify_twilio_signature("secret", INBOUND_URL, {"a": "1", "b": "2"}, signature)
    assert not verify_twilio_signature("secret", INBOUND_URL + "?x=1", params, signature)
    assert not verify_twilio_signature(None, INBOUND_URL, params, signature)
    assert not verify_twilio_signature("secret", INBOUND_URL, params, None)


def _twilio_settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "twilio_account_sid": "AC123",
        "twilio_auth_token": "token",
        "twilio_from_number": "+15550001111",
        "twilio_messaging_service_sid": None,
    }
    values.update(overrides)
    return Settings(**values)


def test_twilio_provider_posts_form_and_reads_sid() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"sid": "SM42", "from": "+15550001111"})

    provider = TwilioSmsProvider(_twilio_settings(), transport=httpx.MockTransport(handler))
    result = provider.send(Dealership(name="D", slug="d"), "+15551234567", "Hello")

    assert result.ok
    assert result.provider_message_id == "SM42"
    assert seen[0].url.path == "/2010-04-01/Accounts/AC123/Messages.json"
    form = dict(httpx.QueryParams(seen[0].content.decode()))
    assert form == {"To": "+15551234567", "Body": "Hello", "From": "+15550001111"}


def test_twilio_provider_prefers_dealership_credentials() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"sid": "SM43"})

    dealership = Dealership(
        name="D",
        slug="d",
        twilio_account_sid="ACdealer",
        twilio_auth_token="dealer-token",
        twilio_messaging_service_sid="MG1",
    )
    TwilioSmsProvider(_twilio_settings(), transport=httpx.MockTransport(handler)).send(dealership, "+15551234567", "Hi")

    assert "/Accounts/ACdealer/" in seen[0].url.path
    form = dict(httpx.QueryParams(seen[0].content.decode()))
    assert form["MessagingServiceSid"] == "MG1"
    assert "From" not in form


@pytest.mark.parametrize(
    ("overrides", "code"),
    [
        ({"twilio_account_sid": None}, "TWILIO_CONFIG_MISSING"),
        ({"twilio_from_number": None}, "TWILIO_SENDER_MISSING"),
    ],
)
def test_twilio_provider_configuration_failures(overrides: dict[str, object], code: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    provider = TwilioSmsProvider(_twilio_settings(**overrides), transport=httpx.MockTransport(handler))
    result = provider.send(Dealership(name="D", slug="d"), "+15551234567", "Hi")

    assert not result.ok
    assert result.error_code == code


def test_twilio_provider_maps_api_errors() -> None:
    def rejected(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})

    def broken(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, content=b"<html>bad gateway</html>")

    settings = _twilio_settings()
    dealership = Dealership(name="D", slug="d")
    api_error = TwilioSmsProvider(settings, transport=httpx.MockTransport(rejected)).send(dealership, "+1", "Hi")
    not_json = TwilioSmsProvider(settings, transport=httpx.MockTransport(broken)).send(dealership, "+1", "Hi")

    assert api_error.error_code == "21211"
    assert api_error.error_message == "Invalid 'To' Phone Number"
    assert not_json.error_code == "TWILIO_SEND_FAILED"
    assert not_json.status == FAILED
