from __future__ import annotations

import pytest

from app.platform.security.redaction import (
    REDACTED_EMAIL,
    REDACTED_PHONE,
    REDACTED_TEXT,
    REDACTED_VALUE,
    redact_json,
    redact_name,
    redact_text,
)


def test_redact_text_scrubs_emails_and_phone_numbers() -> None:
    text = "Call me at +1 (555) 123-4567 or write to Jo.Smith@Example.com"

    assert redact_text(text) == f"Call me at {REDACTED_PHONE} or write to {REDACTED_EMAIL}"


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("call +15551234567x22", f"call {REDACTED_PHONE}x22"),
        ("ref5551234567", f"ref{REDACTED_PHONE}"),
        ("555-123-4567-ext 9", f"{REDACTED_PHONE}-ext 9"),
    ],
)
def test_redact_text_catches_phones_glued_to_other_text(text: str, expected: str) -> None:
    assert redact_text(text) == expected


@pytest.mark.parametrize(
    "text",
    [
        "lead 123e4567-e89b-12d3-a456-426614174000 updated",
        "queued_at 2024-05-01T10:15:30.123456+00:00",
        "window 2024-05-01,2024-05-31",
    ],
)
def test_redact_text_keeps_identifiers_and_timestamps(text: str) -> None:
    assert redact_text(text) == text


@pytest.mark.parametrize("text", ["Order 12345 is ready", "Stock #A1234-77", "Room 101"])
def test_redact_text_keeps_short_numbers(text: str) -> None:
    assert redact_text(text) == text


def test_redact_json_by_key_class() -> None:
    payload = {
        "first_name": "Jordan",
        "lastName": "Diaz",
        "Email": "jordan@example.com",
        "phone_number": "+15551234567",
        "vehicle_interest": "Civic",
        "notes": "reach me at 555 123 4567",
        "score": 42,
        "sold": False,
        "assigned_to_user_id": None,
    }

    assert redact_json(payload) == {
        "first_name": REDACTED_VALUE,
        "lastName": REDACTED_VALUE,
        "Email": REDACTED_VALUE,
        "phone_number": REDACTED_VALUE,
        "vehicle_interest": REDACTED_TEXT,
        "notes": f"reach me at {REDACTED_PHONE}",
        "score": 42,
        "sold": False,
        "assigned_to_user_id": None,
    }


def test_redact_json_recurses_and_does_not_mutate_input() -> None:
    payload = {"rows": [{"email": "a@example.com"}, "ping b@example.com"], "meta": {"body": "hello"}}

    redacted = redact_json(payload)

    assert redacted == {"rows": [{"email": REDACTED_VALUE}, f"ping {REDACTED_EMAIL}"], "meta": {"body": REDACTED_TEXT}}
    assert payload["rows"][0] == {"email": "a@example.com"}
    assert redact_json(None) is None
    assert redact_json(("x@example.com",)) == [REDACTED_EMAIL]


@pytest.mark.parametrize(
    ("first", "last", "expected"),
    [("jordan", "diaz", "J. D."), ("Ann", None, "A."), (None, "  lee ", "L."), (None, "   ", "Unknown"), (None, None, "Unknown")],
)
def test_redact_name_keeps_initials_only(first: str | None, last: str | None, expected: str) -> None:
    assert redact_name(first, last) == expected


def test_redact_json_masks_identity_and_text_keys_even_when_null() -> None:
    payload = {"email": None, "firstName": None, "summary": None, "assigned_to_user_id": None}

    assert redact_json(payload) == {
        "email": REDACTED_VALUE,
        "firstName": REDACTED_VALUE,
        "summary": REDACTED_TEXT,
        "assigned_to_user_id": None,
    }
