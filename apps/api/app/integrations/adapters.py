from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from fastapi import HTTPException, status

from app.integrations.csv_import import NormalizedLead, normalize_lead


FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "source": ("source", "leadSource", "lead_source", "provider"),
    "first_name": ("firstName", "first_name", "fname"),
    "last_name": ("lastName", "last_name", "lname"),
    "email": ("email", "emailAddress", "email_address"),
    "phone": ("phone", "phoneNumber", "phone_number", "mobile"),
    "vehicle_interest": ("vehicleInterest", "vehicle_interest", "vehicle", "stock", "vin"),
    "lead_type": ("leadType", "lead_type"),
}


@dataclass
class AdaptedLead:
    lead: NormalizedLead
    provider: str


class LeadAdapter(Protocol):
    def adapt(self, provider: str, payload: Any) -> AdaptedLead:
        ...


def _pick(payload: dict[str, Any], aliases: tuple[str, ...]) -> str | None:
    # non-string values never count as present
    for key in aliases:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


class GenericLeadAdapter:
    """Maps loosely-shaped JSON lead payloads onto the canonical lead fields."""

    def adapt(self, provider: str, payload: Any) -> AdaptedLead:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inbound payload must be an object")

        values = {field_name: _pick(payload, aliases) for field_name, aliases in FIELD_ALIASES.items()}
        if values["source"] is None:
            values["source"] = provider

        result = normalize_lead(values)
        if result.lead.email is None and result.lead.phone is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Inbound payload must include either email or phone",
            )
        if not result.ok:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="; ".join(f"{error.field}: {error.message}" for error in result.errors),
            )
        return AdaptedLead(lead=result.lead, provider=provider)


generic_adapter = GenericLeadAdapter()
