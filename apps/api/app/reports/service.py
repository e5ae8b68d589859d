from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone

from fastapi import HTTPException, status
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from app.core.database import as_utc, utcnow
from app.crm.models import Activity, Lead
from app.models.audit import EventLog
from app.reports.schemas import BreakdownRead, BreakdownRow, OverviewRead, PeriodCounts, ResponseTimeRead


EVENT_LOG_QUERY_LIMIT = 200

# overview metric -> event type it is replayed from
OVERVIEW_EVENTS = {
    "leads": "lead_created",
    "appointments": "appointment_created",
    "shows": "appointment_showed",
    "sold": "lead_sold",
}

BREAKDOWN_KEYS = {
    "source": "source",
    "assigned_user": "assigned_to_user_id",
    "status": "status",
    "lead_type": "lead_type",
}


@dataclass(frozen=True, slots=True)
class Window:
    start: datetime
    end: datetime


def today_window(now: datetime) -> Window:
    start = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
    return Window(start=start, end=start + timedelta(days=1) - timedelta(microseconds=1))


def week_window(now: datetime) -> Window:
    monday = now.date() - timedelta(days=now.weekday())
    start = datetime.combine(monday, time.min, tzinfo=timezone.utc)
    return Window(start=start, end=start + timedelta(days=7) - timedelta(microseconds=1))


def month_window(now: datetime) -> Window:
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        following = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        following = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return Window(start=start, end=following - timedelta(microseconds=1))


def _check_range(start: datetime | None, end: datetime | None) -> tuple[datetime | None, datetime | None]:
    start, end = as_utc(start), as_utc(end)
    if start is not None and end is not None and start > end:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start must be before end")
    return start, end


@dataclass(slots=True)
class ReportsService:
    """Read models rebuilt from the event log; no stored counters are consulted."""

    def _events(
        self,
        dealership_id: uuid.UUID,
        *,
        event_type: str | None = None,
        entity_type: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Select[tuple[EventLog]]:
        stmt = select(EventLog).where(EventLog.dealership_id == dealership_id)
        if event_type:
            stmt = stmt.where(EventLog.event_type == event_type)
        if entity_type:
            stmt = stmt.where(EventLog.entity_type == entity_type)
        if start is not None:
            stmt = stmt.where(EventLog.occurred_at >= start)
        if end is not None:
            stmt = stmt.where(EventLog.occurred_at <= end)
        return stmt

    def _count(self, session: Session, dealership_id: uuid.UUID, event_type: str, window: Window) -> int:
        stmt = self._events(dealership_id, event_type=event_type, start=window.start, end=window.end)
        return int(session.scalar(select(func.count()).select_from(stmt.subquery())) or 0)

    def period_counts(self, session: Session, dealership_id: uuid.UUID, window: Window) -> PeriodCounts:
        return PeriodCounts(
            **{metric: self._count(session, dealership_id, event_type, window) for metric, event_type in OVERVIEW_EVENTS.items()}
        )

    def overview(self, session: Session, dealership_id: uuid.UUID, now: datetime | None = None) -> OverviewRead:
        moment = now or utcnow()
        return OverviewRead(
            today=self.period_counts(session, dealership_id, today_window(moment)),
            week=self.period_counts(session, dealership_id, week_window(moment)),
            month=self.period_counts(session, dealership_id, month_window(moment)),
        )

    def breakdown(
        self,
        session: Session,
        dealership_id: uuid.UUID,
        dimension: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> BreakdownRead:
        """Group ``lead_created`` snapshots by one attribute as it was at creation time."""

        payload_key = BREAKDOWN_KEYS.get(dimension)
        if payload_key is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"dimension must be one of: {', '.join(BREAKDOWN_KEYS)}",
            )
        start, end = _check_range(start, end)

        events = session.scalars(self._events(dealership_id, event_type="lead_created", start=start, end=end)).all()
        counts: Counter[str | None] = Counter()
        for event in events:
            value = (event.payload or {}).get(payload_key)
            counts[str(value) if value is not None else None] += 1

        rows = [BreakdownRow(key=key, leads=total) for key, total in counts.items()]
        rows.sort(key=lambda row: (-row.leads, row.key or ""))
        return BreakdownRead(dimension=dimension, start=start, end=end, rows=rows)

    def list_event_logs(
        self,
        session: Session,
        dealership_id: uuid.UUID,
        *,
        event_type: str | None = None,
        entity_type: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[EventLog]:
        start, end = _check_range(start, end)
        stmt = self._events(
            dealership_id,
            event_type=(event_type or "").strip() or None,
            entity_type=(entity_type or "").strip() or None,
            start=start,
            end=end,
        )
        return list(session.scalars(stmt.order_by(EventLog.occurred_at.desc()).limit(EVENT_LOG_QUERY_LIMIT)).all())

    def response_time(self, session: Session, dealership_id: uuid.UUID) -> ResponseTimeRead:
        first_activity = (
            select(Activity.lead_id, func.min(Activity.created_at).label("first_at"))
            .where(Activity.dealership_id == dealership_id)
            .group_by(Activity.lead_id)
            .subquery()
        )
        rows = session.execute(
            select(Lead.created_at, first_activity.c.first_at)
            .join(first_activity, first_activity.c.lead_id == Lead.id)
            .where(Lead.dealership_id == dealership_id)
        ).all()

        diffs = [
            max(0.0, (as_utc(first_at) - as_utc(created_at)).total_seconds() / 60.0)  # type: ignore[operator]
            for created_at, first_at in rows
        ]
        if not diffs:
            return ResponseTimeRead(average_minutes=None, sample_size=0)
        return ResponseTimeRead(average_minutes=round(sum(diffs) / len(diffs), 2), sample_size=len(diffs))


reports_service = ReportsService()
