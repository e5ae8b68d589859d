from __future__ import annotations

import csv
import io
import re
from dataclasses import asdict, dataclass, field
from typing import Any

from fastapi import HTTPException, status

from app.crm.models import LeadStatus, LeadType


CANONICAL_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "vehicle_interest",
    "source",
    "lead_type",
    "status",
)

# keys are lower-cased with every non-alphanumeric character removed
HEADER_ALIASES: dict[str, str] = {
    "firstname": "first_name",
    "fname": "first_name",
    "lastname": "last_name",
    "lname": "last_name",
    "email": "email",
    "emailaddress": "email",
    "phone": "phone",
    "phonenumber": "phone",
    "mobile": "phone",
    "vehicleinterest": "vehicle_interest",
    "vehicle": "vehicle_interest",
    "source": "source",
    "leadsource": "source",
    "leadtype": "lead_type",
    "status": "status",
}

LEAD_TYPES = frozenset(item.value for item in LeadType)
LEAD_STATUSES = frozenset(item.value for item in LeadStatus)

CONTACT_HEADER_MESSAGE = (
    "CSV header is invalid. Include at least one contact column (email or phone). "
    "Example: first_name,last_name,email,phone,vehicle_interest"
)
CONTACT_FIELD = "email|phone"


@dataclass
class FieldError:
    field: str
    message: str


@dataclass
class NormalizedLead:
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    vehicle_interest: str | None = None
    source: str | None = None
    lead_type: str = LeadType.GENERAL.value
    status: str = LeadStatus.NEW.value

    def as_payload(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class NormalizationResult:
    lead: NormalizedLead
    errors: list[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class CsvRow:
    row_number: int
    raw: dict[str, str]
    canonical: dict[str, str]


@dataclass
class ParsedCsv:
    headers: list[str]
    header_map: dict[str, str]
    rows: list[CsvRow]


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def canonical_header(header: str) -> str | None:
    return HEADER_ALIASES.get(re.sub(r"[^a-z0-9]", "", header.strip().lower()))


def normalize_cell(raw: Any) -> str | None:
    if raw is None:
        return None
    trimmed = str(raw).strip()
    return trimmed or None


def normalize_email(raw: Any) -> str | None:
    value = normalize_cell(raw)
    return value.lower() if value else None


def normalize_phone(raw: Any) -> str | None:
    value = normalize_cell(raw)
    if value is None:
        return None
    digits = re.sub(r"\D", "", value)
    if not digits:
        return None
    return f"+{digits}" if value.startswith("+") else digits


def normalize_lead(values: dict[str, Any]) -> NormalizationResult:
    """Normalize one canonical-keyed record. Errors are collected, never raised."""

    errors: list[FieldError] = []

    lead_type = normalize_cell(values.get("lead_type"))
    lead_type = lead_type.upper() if lead_type else None
    if lead_type and lead_type not in LEAD_TYPES:
        errors.append(FieldError(field="lead_type", message=f'Unsupported lead_type "{lead_type}"'))

    lead_status = normalize_cell(values.get("status"))
    lead_status = lead_status.upper() if lead_status else None
    if lead_status and lead_status not in LEAD_STATUSES:
        errors.append(FieldError(field="status", message=f'Unsupported status "{lead_status}"'))

    lead = NormalizedLead(
        first_name=normalize_cell(values.get("first_name")),
        last_name=normalize_cell(values.get("last_name")),
        email=normalize_email(values.get("email")),
        phone=normalize_phone(values.get("phone")),
        vehicle_interest=normalize_cell(values.get("vehicle_interest")),
        source=normalize_cell(values.get("source")),
        lead_type=lead_type if lead_type in LEAD_TYPES else LeadType.GENERAL.value,
        status=lead_status if lead_status in LEAD_STATUSES else LeadStatus.NEW.value,
    )

    if lead.email is None and lead.phone is None:
        errors.append(FieldError(field=CONTACT_FIELD, message="Either email or phone is required"))

    return NormalizationResult(lead=lead, errors=errors)


def _is_empty_line(record: list[str]) -> bool:
    # a row of empty cells such as "," is still a row
    return not record or (len(record) == 1 and not record[0].strip())


def parse_csv(text: str) -> ParsedCsv:
    """Parse CSV text into header-mapped rows.

    Structural problems (unterminated quotes, empty header names, missing contact
    columns, ragged rows) reject the whole document with a 400.
    """

    if text.startswith("\ufeff"):
        text = text[1:]

    reader = csv.reader(io.StringIO(text, newline=""), strict=True)
    records: list[tuple[int, list[str]]] = []
    try:
        for record in reader:
            if _is_empty_line(record):
                continue
            records.append((reader.line_num, record))
    except csv.Error as exc:
        raise _bad_request(f"CSV is malformed near line {reader.line_num}: {exc}") from None

    if len(records) < 2:
        raise _bad_request("CSV must include a header row and at least one data row")

    headers = [header.strip() for header in records[0][1]]
    if any(not header for header in headers):
        raise _bad_request("CSV header row is invalid: empty column names are not allowed")

    header_map: dict[str, str] = {}
    for header in headers:
        canonical = canonical_header(header)
        if canonical is not None and canonical not in header_map.values():
            header_map[header] = canonical

    mapped = set(header_map.values())
    if "email" not in mapped and "phone" not in mapped:
        raise _bad_request(CONTACT_HEADER_MESSAGE)

    rows: list[CsvRow] = []
    for index, (_, record) in enumerate(records[1:], start=2):
        if len(record) != len(headers):
            raise _bad_request(f"CSV row {index} has {len(record)} columns but expected {len(headers)}")
        raw = dict(zip(headers, record))
        canonical_values = {canonical: raw[header] for header, canonical in header_map.items()}
        rows.append(CsvRow(row_number=index, raw=raw, canonical=canonical_values))

    return ParsedCsv(headers=headers, header_map=header_map, rows=rows)
