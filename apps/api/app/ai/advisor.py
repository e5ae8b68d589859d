from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from app.crm.models import LeadStatus
from app.platform.security.redaction import redact_name, redact_text


class DraftChannel(StrEnum):
    SMS = "SMS"
    EMAIL = "EMAIL"


class DraftTone(StrEnum):
    FRIENDLY = "FRIENDLY"
    PROFESSIONAL = "PROFESSIONAL"
    DIRECT = "DIRECT"


@dataclass(frozen=True)
class ActivitySummary:
    type: str
    subject: str | None
    created_at: datetime


@dataclass(frozen=True)
class LeadContext:
    id: str
    status: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    vehicle_interest: str | None = None
    source: str | None = None
    last_activity_at: datetime | None = None
    activity_count: int = 0
    latest_activities: list[ActivitySummary] = field(default_factory=list)


@dataclass(frozen=True)
class NextBestAction:
    action: str
    rationale: str


@dataclass(frozen=True)
class FollowupDraft:
    channel: DraftChannel
    tone: DraftTone
    message: str


TONE_CLOSERS = {
    DraftTone.DIRECT: "Can we lock in a time to connect today?",
    DraftTone.PROFESSIONAL: "Please let me know a convenient time to continue your purchase planning.",
    DraftTone.FRIENDLY: "Would you be open to a quick chat today?",
}


class RulesAdvisor:
    """Deterministic advisory output. Summaries carry initials only; free text goes through the text redactor."""

    def next_best_action(self, context: LeadContext) -> NextBestAction:
        if not context.phone and context.email:
            return NextBestAction(
                action="Send email with availability and pricing options",
                rationale="Lead has email but no phone, so email is the best reachable channel.",
            )
        if context.status == LeadStatus.APPOINTMENT_SET:
            return NextBestAction(
                action="Confirm appointment and send reminder",
                rationale="Lead is appointment-set and should be protected from no-show risk.",
            )
        if context.activity_count == 0:
            return NextBestAction(
                action="Call now to establish first contact",
                rationale="No activity exists yet, so immediate first-touch outreach is highest leverage.",
            )
        return NextBestAction(
            action="Offer payment options and book a dealership visit",
            rationale="Lead has engagement history and should be moved toward an in-person commitment.",
        )

    def summary(self, context: LeadContext) -> str:
        name = redact_name(context.first_name, context.last_name)
        interest = redact_text(context.vehicle_interest) if context.vehicle_interest else "unspecified vehicle"
        if context.latest_activities:
            latest = context.latest_activities[0]
            recent = f"{latest.type}: {redact_text(latest.subject or '')}".rstrip(": ")
        else:
            recent = "no recent activities"
        next_step = self.next_best_action(context)
        return (
            f"{name} is currently {context.status}. Interested in {interest}. "
            f"Latest timeline item: {recent}. Suggested next step: {next_step.action}."
        )

    def draft(
        self,
        context: LeadContext,
        channel: DraftChannel = DraftChannel.EMAIL,
        tone: DraftTone = DraftTone.FRIENDLY,
        instruction: str | None = None,
    ) -> FollowupDraft:
        greeting = "Hi" if channel == DraftChannel.SMS else "Hello"
        first_name = (context.first_name or "").strip() or "there"
        vehicle = redact_text(context.vehicle_interest) if context.vehicle_interest else "a vehicle you asked about"
        extra = f" {redact_text(instruction)}" if instruction else ""
        message = (
            f"{greeting} {first_name}, thanks again for your interest in {vehicle}. "
            f"I can share availability and payment options for you.{extra} {TONE_CLOSERS[tone]}"
        )
        return FollowupDraft(channel=channel, tone=tone, message=message)


rules_advisor = RulesAdvisor()
