from __future__ import annotations

import re
from typing import Any


REDACTED_EMAIL = "[REDACTED_EMAIL]"
REDACTED_PHONE = "[REDACTED_PHONE]"
REDACTED_VALUE = "[REDACTED]"
REDACTED_TEXT = "[REDACTED_TEXT]"

_EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
_PHONE_RE = re.compile(
    # identifiers and timestamps are matched first so their digit runs are never read as phones
    r"(?P<uuid>\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b)"
    r"|(?P<timestamp>\b\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?)"
    r"|(?P<phone>\+?\d[\d\s().-]{7,}\d)",
    re.IGNORECASE,
)
_MIN_PHONE_DIGITS = 8

_IDENTITY_KEYS = {
    "firstname",
    "lastname",
    "name",
    "fullname",
    "email",
    "emailaddress",
    "phone",
    "phonenumber",
    "mobile",
}
_TEXT_KEYS = {
    "message",
    "summary",
    "instruction",
    "subject",
    "body",
    "outcome",
    "vehicleinterest",
}


def _normalize_key(key: str) -> str:
    return re.sub(r"[^a-z0-9]", "", key.lower())


def _replace_phone(match: re.Match[str]) -> str:
    if match.group("phone") is None:
        return match.group(0)
    digits = sum(1 for char in match.group(0) if char.isdigit())
    if digits < _MIN_PHONE_DIGITS:
        return match.group(0)
    return REDACTED_PHONE


def redact_text(value: str) -> str:
    without_emails = _EMAIL_RE.sub(REDACTED_EMAIL, value)
    return _PHONE_RE.sub(_replace_phone, without_emails)


def redact_json(value: Any) -> Any:
    """Return a redacted deep copy of a JSON-like value.

    Identity keys are replaced wholesale, free-text keys are blanked and every other
    string is scrubbed of email and phone shaped substrings.
    """

    if value is None:
        return None
    if isinstance(value, dict):
        redacted: dict[str, Any] = {}
        for key, item in value.items():
            normalized = _normalize_key(str(key))
            if normalized in _IDENTITY_KEYS:
                redacted[key] = REDACTED_VALUE
            elif normalized in _TEXT_KEYS:
                redacted[key] = REDACTED_TEXT
            elif item is None:
                redacted[key] = None
            else:
                redacted[key] = redact_json(item)
        return redacted
    if isinstance(value, (list, tuple)):
        return [redact_json(item) for item in value]
    if isinstance(value, str):
        return redact_text(value)
    return value


def redact_name(first_name: str | None, last_name: str | None) -> str:
    initials = [f"{part.strip()[0].upper()}." for part in (first_name, last_name) if part and part.strip()]
    if not initials:
        return "Unknown"
    return " ".join(initials)
