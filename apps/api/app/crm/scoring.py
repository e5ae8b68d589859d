from __future__ import annotations

import re
import time
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from app.communications.models import Message, MessageChannel, MessageDirection
from app.core.database import as_utc, utcnow
from app.crm.models import Activity, ActivityType, Appointment, AppointmentStatus, Lead, LeadStatus
from app.metrics import observe_lead_scoring
from app.otel import get_tracer, start_span


MIN_SCORE = 0
MAX_SCORE = 100

PHONE_POINTS = 10
EMAIL_POINTS = 8
FULL_NAME_POINTS = 6
PARTIAL_NAME_POINTS = 3
VEHICLE_INTEREST_POINTS = 6
CONTACTABILITY_CAP = 30

OUTBOUND_MESSAGE_POINTS = 10
INBOUND_MESSAGE_POINTS = 15
CALL_POINTS = 10
PERSISTENCE_POINTS = 10
PERSISTENCE_ATTEMPTS = 3
ENGAGEMENT_CAP = 35

SHOWED_APPOINTMENT_POINTS = 25
UPCOMING_APPOINTMENT_POINTS = 15

STAGE_POINTS: dict[str, int] = {
    LeadStatus.NEW: 0,
    LeadStatus.CONTACTED: 5,
    LeadStatus.QUALIFIED: 10,
    LeadStatus.APPOINTMENT_SET: 15,
    LeadStatus.NEGOTIATING: 20,
    LeadStatus.LOST: 0,
}

FRESH_ACTIVITY_POINTS = 5
RECENT_ACTIVITY_POINTS = 2
STALE_ACTIVITY_POINTS = -5
NO_SHOW_PENALTY = -10

tracer = get_tracer("app.crm.scoring")


@dataclass(frozen=True)
class LeadSnapshot:
    status: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    vehicle_interest: str | None = None
    last_activity_at: datetime | None = None
    sold_at: datetime | None = None

    @classmethod
    def from_lead(cls, lead: Lead) -> LeadSnapshot:
        return cls(
            status=lead.status,
            first_name=lead.first_name,
            last_name=lead.last_name,
            email=lead.email,
            phone=lead.phone,
            vehicle_interest=lead.vehicle_interest,
            last_activity_at=as_utc(lead.last_activity_at),
            sold_at=as_utc(lead.sold_at),
        )


@dataclass(frozen=True)
class EngagementCounts:
    outbound_messages: int = 0
    inbound_messages: int = 0
    calls: int = 0
    showed_appointments: int = 0
    upcoming_appointments: int = 0
    no_show_appointments: int = 0


@dataclass(frozen=True)
class ScoreBreakdown:
    contactability: int = 0
    engagement: int = 0
    appointment: int = 0
    stage: int = 0
    freshness: int = 0
    penalty: int = 0
    sold_override: bool = False

    def total(self) -> int:
        if self.sold_override:
            return MAX_SCORE
        raw = self.contactability + self.engagement + self.appointment + self.stage + self.freshness + self.penalty
        return max(MIN_SCORE, min(MAX_SCORE, raw))


@dataclass(frozen=True)
class ScoreResult:
    score: int
    breakdown: ScoreBreakdown
    reasons: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {"score": self.score, "breakdown": asdict(self.breakdown), "reasons": list(self.reasons)}


def _has_text(value: str | None) -> bool:
    return bool(value and value.strip())


def _contactability(lead: LeadSnapshot) -> int:
    points = 0
    if lead.phone and len(re.sub(r"\D", "", lead.phone)) >= 10:
        points += PHONE_POINTS
    if lead.email and "@" in lead.email:
        points += EMAIL_POINTS
    has_first = _has_text(lead.first_name)
    has_last = _has_text(lead.last_name)
    if has_first and has_last:
        points += FULL_NAME_POINTS
    elif has_first or has_last:
        points += PARTIAL_NAME_POINTS
    if _has_text(lead.vehicle_interest):
        points += VEHICLE_INTEREST_POINTS
    return min(points, CONTACTABILITY_CAP)


def _engagement(counts: EngagementCounts) -> int:
    points = 0
    if counts.outbound_messages >= 1:
        points += OUTBOUND_MESSAGE_POINTS
    if counts.inbound_messages >= 1:
        points += INBOUND_MESSAGE_POINTS
    if counts.calls >= 1:
        points += CALL_POINTS
    if counts.outbound_messages + counts.calls >= PERSISTENCE_ATTEMPTS:
        points += PERSISTENCE_POINTS
    return min(points, ENGAGEMENT_CAP)


def _appointment(counts: EngagementCounts) -> int:
    if counts.showed_appointments > 0:
        return SHOWED_APPOINTMENT_POINTS
    if counts.upcoming_appointments > 0:
        return UPCOMING_APPOINTMENT_POINTS
    return 0


def _freshness(last_activity_at: datetime | None, now: datetime) -> int:
    if last_activity_at is None:
        return 0
    age = now - last_activity_at
    if age <= timedelta(days=1):
        return FRESH_ACTIVITY_POINTS
    if age <= timedelta(days=3):
        return RECENT_ACTIVITY_POINTS
    if age > timedelta(days=14):
        return STALE_ACTIVITY_POINTS
    return 0


def build_reasons(breakdown: ScoreBreakdown, counts: EngagementCounts | None = None) -> list[str]:
    if breakdown.sold_override:
        return ["Lead is sold"]

    reasons: list[str] = []
    if breakdown.contactability > 0:
        reasons.append(f"Contact details on file (+{breakdown.contactability})")
    if breakdown.engagement > 0:
        reasons.append(f"Two-way engagement recorded (+{breakdown.engagement})")
    if breakdown.appointment == SHOWED_APPOINTMENT_POINTS:
        reasons.append(f"Showed for an appointment (+{breakdown.appointment})")
    elif breakdown.appointment > 0:
        reasons.append(f"Upcoming appointment booked (+{breakdown.appointment})")
    if breakdown.stage > 0:
        reasons.append(f"Pipeline stage progress (+{breakdown.stage})")
    if breakdown.freshness > 0:
        reasons.append(f"Recent activity (+{breakdown.freshness})")
    elif breakdown.freshness < 0:
        reasons.append(f"No activity in over 14 days ({breakdown.freshness})")
    if breakdown.penalty < 0:
        reasons.append(f"Missed appointment ({breakdown.penalty})")
    if counts is not None and counts.inbound_messages == 0 and breakdown.engagement > 0:
        reasons.append("No reply from the customer yet")
    if not reasons:
        reasons.append("No scoring signals yet")
    return reasons


def compute_score(
    lead: LeadSnapshot,
    load_counts: Callable[[], EngagementCounts],
    now: datetime,
) -> ScoreResult:
    """Score a lead from its snapshot and related-record counts.

    Sold leads short-circuit to the maximum without calling ``load_counts``.
    """

    if lead.status == LeadStatus.SOLD or lead.sold_at is not None:
        breakdown = ScoreBreakdown(sold_override=True)
        return ScoreResult(score=MAX_SCORE, breakdown=breakdown, reasons=build_reasons(breakdown))

    counts = load_counts()
    breakdown = ScoreBreakdown(
        contactability=_contactability(lead),
        engagement=_engagement(counts),
        appointment=_appointment(counts),
        stage=STAGE_POINTS.get(lead.status, 0),
        freshness=_freshness(as_utc(lead.last_activity_at), now),
        penalty=NO_SHOW_PENALTY if counts.no_show_appointments > 0 else 0,
    )
    return ScoreResult(score=breakdown.total(), breakdown=breakdown, reasons=build_reasons(breakdown, counts))


def load_engagement_counts(
    session: Session,
    dealership_id: uuid.UUID,
    lead_id: uuid.UUID,
    now: datetime,
) -> EngagementCounts:
    def count_messages(*conditions) -> int:  # type: ignore[no-untyped-def]
        stmt = select(func.count(Message.id)).where(
            and_(Message.dealership_id == dealership_id, Message.lead_id == lead_id, *conditions)
        )
        return int(session.scalar(stmt) or 0)

    def count_appointments(*conditions) -> int:  # type: ignore[no-untyped-def]
        stmt = select(func.count(Appointment.id)).where(
            and_(Appointment.dealership_id == dealership_id, Appointment.lead_id == lead_id, *conditions)
        )
        return int(session.scalar(stmt) or 0)

    call_activities = int(
        session.scalar(
            select(func.count(Activity.id)).where(
                and_(
                    Activity.dealership_id == dealership_id,
                    Activity.lead_id == lead_id,
                    Activity.type == ActivityType.CALL.value,
                )
            )
        )
        or 0
    )

    return EngagementCounts(
        outbound_messages=count_messages(
            Message.direction == MessageDirection.OUTBOUND.value,
            Message.channel.in_([MessageChannel.SMS.value, MessageChannel.EMAIL.value]),
        ),
        inbound_messages=count_messages(Message.direction == MessageDirection.INBOUND.value),
        calls=count_messages(Message.channel == MessageChannel.CALL.value) + call_activities,
        showed_appointments=count_appointments(Appointment.status == AppointmentStatus.SHOWED.value),
        upcoming_appointments=count_appointments(
            Appointment.status.in_([AppointmentStatus.SET.value, AppointmentStatus.CONFIRMED.value]),
            Appointment.start_at > now,
        ),
        no_show_appointments=count_appointments(Appointment.status == AppointmentStatus.NO_SHOW.value),
    )


class LeadScoringService:
    def compute(self, session: Session, lead: Lead, now: datetime | None = None) -> ScoreResult:
        moment = now or utcnow()
        started = time.perf_counter()
        with start_span(tracer, "crm.lead.score", lead_id=str(lead.id)) as span:
            result = compute_score(
                LeadSnapshot.from_lead(lead),
                lambda: load_engagement_counts(session, lead.dealership_id, lead.id, moment),
                moment,
            )
            span.set_attribute("score", result.score)
        observe_lead_scoring("sold" if result.breakdown.sold_override else "computed", time.perf_counter() - started)
        return result

    def recalculate_and_persist(self, session: Session, lead: Lead, *, commit: bool = True) -> ScoreResult:
        result = self.compute(session, lead)
        lead.score = result.score
        lead.score_updated_at = utcnow()
        session.add(lead)
        if commit:
            session.commit()
        else:
            session.flush()
        return result

    def explain(self, session: Session, lead: Lead) -> dict[str, object]:
        return self.compute(session, lead).as_dict()


lead_scoring_service = LeadScoringService()
