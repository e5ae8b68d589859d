from __future__ import annotations

import logging
import uuid
from datetime import datetime, time, timedelta, timezone
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from app.communications.models import Message
from app.core.database import as_utc, utcnow
from app.crm.models import (
    Activity,
    Appointment,
    AppointmentStatus,
    Lead,
    LeadStatus,
    LeadType,
    Task,
    TaskStatus,
)
from app.crm.schemas import (
    ActivityCreate,
    AppointmentCreate,
    AssignableUser,
    LeadCreate,
    LeadOptionsRead,
    LeadUpdate,
    TaskCreate,
    TimelineItem,
    TimelinePage,
)
from app.crm.scoring import lead_scoring_service
from app.dealerships.models import Membership
from app.dealerships.service import require_active_member
from app.platform.security.context import AccessContext, TenantRole
from app.platform.security.repository import TenantRepository
from app.services.audit import emit_event, write_audit_log


logger = logging.getLogger("app.crm")

MANAGING_ROLES = frozenset({TenantRole.ADMIN, TenantRole.MANAGER})
TIMELINE_DEFAULT_LIMIT = 25
TIMELINE_MAX_LIMIT = 25


class LeadRepository(TenantRepository[Lead]):
    model = Lead
    not_found_detail = "Lead not found"


class AppointmentRepository(TenantRepository[Appointment]):
    model = Appointment
    not_found_detail = "Appointment not found"


class TaskRepository(TenantRepository[Task]):
    model = Task
    not_found_detail = "Task not found"


leads = LeadRepository()
appointments = AppointmentRepository()
tasks = TaskRepository()


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _conflict(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


def _parse_timestamp(raw: str) -> datetime:
    value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_timeline_cursor(raw: str) -> tuple[datetime, uuid.UUID | None]:
    timestamp, _, row_id = raw.partition("|")
    return _parse_timestamp(timestamp), uuid.UUID(row_id) if row_id else None


def parse_date_range(raw: str | None, now: datetime | None = None) -> tuple[datetime, datetime] | None:
    """Resolve a ``TODAY``/``THIS_WEEK``/``THIS_MONTH`` preset or a ``start,end`` ISO pair."""

    if not raw:
        return None

    moment = now or utcnow()
    end_of_day = datetime.combine(moment.date(), time.max, tzinfo=timezone.utc)
    presets = {"TODAY": 0, "THIS_WEEK": 6, "THIS_MONTH": 29}
    if raw in presets:
        start_day = moment.date() - timedelta(days=presets[raw])
        return datetime.combine(start_day, time.min, tzinfo=timezone.utc), end_of_day

    parts = [part.strip() for part in raw.split(",")]
    if len(parts) != 2:
        raise _bad_request('dateRange must use format "start,end" with ISO timestamps')
    try:
        return _parse_timestamp(parts[0]), _parse_timestamp(parts[1])
    except ValueError:
        raise _bad_request("dateRange must contain valid ISO timestamps") from None


def get_lead(session: Session, dealership_id: uuid.UUID, lead_id: uuid.UUID) -> Lead:
    return leads.get(session, dealership_id, lead_id)


class LeadService:
    def list_leads(
        self,
        session: Session,
        ctx: AccessContext,
        *,
        status_filter: LeadStatus | None = None,
        lead_type: LeadType | None = None,
        assigned_to: uuid.UUID | None = None,
        source: str | None = None,
        q: str | None = None,
        date_range: str | None = None,
    ) -> list[Lead]:
        stmt = leads.scoped(ctx.dealership_id)
        if status_filter is not None:
            stmt = stmt.where(Lead.status == status_filter.value)
        if lead_type is not None:
            stmt = stmt.where(Lead.lead_type == lead_type.value)
        if assigned_to is not None:
            stmt = stmt.where(Lead.assigned_to_user_id == assigned_to)
        if source:
            stmt = stmt.where(func.lower(Lead.source) == source.strip().lower())
        if q:
            pattern = f"%{q.strip()}%"
            stmt = stmt.where(
                or_(
                    Lead.first_name.ilike(pattern),
                    Lead.last_name.ilike(pattern),
                    Lead.email.ilike(pattern),
                    Lead.phone.ilike(pattern),
                    Lead.vehicle_interest.ilike(pattern),
                )
            )
        window = parse_date_range(date_range)
        if window is not None:
            stmt = stmt.where(Lead.created_at >= window[0], Lead.created_at <= window[1])

        stmt = stmt.order_by(Lead.last_activity_at.desc().nulls_last(), Lead.created_at.desc())
        return list(session.scalars(stmt).all())

    def get_lead(self, session: Session, ctx: AccessContext, lead_id: uuid.UUID) -> Lead:
        return leads.get(session, ctx.dealership_id, lead_id)

    def create_lead(self, session: Session, ctx: AccessContext, dto: LeadCreate) -> Lead:
        if dto.status == LeadStatus.SOLD and ctx.role not in MANAGING_ROLES:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only admin/manager can mark a lead as sold",
            )
        assigned_to = dto.assigned_to_user_id
        if ctx.role == TenantRole.SALES:
            assigned_to = ctx.user_id
        if assigned_to is not None:
            require_active_member(session, ctx.dealership_id, assigned_to)

        lead = Lead(
            dealership_id=ctx.dealership_id,
            first_name=dto.first_name,
            last_name=dto.last_name,
            email=str(dto.email).lower() if dto.email else None,
            phone=dto.phone.strip() if dto.phone else None,
            status=dto.status.value,
            lead_type=dto.lead_type.value,
            vehicle_interest=dto.vehicle_interest,
            source=dto.source,
            assigned_to_user_id=assigned_to,
            sold_at=utcnow() if dto.status == LeadStatus.SOLD else None,
        )
        session.add(lead)
        session.flush()
        lead_scoring_service.recalculate_and_persist(session, lead)

        write_audit_log(
            session,
            action="lead.created",
            entity_type="lead",
            entity_id=lead.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"status": lead.status, "source": lead.source},
        )
        emit_lead_created(session, lead, actor_user_id=ctx.user_id)
        logger.info("lead.created", extra={"lead_id": str(lead.id), "user_id": str(ctx.user_id)})
        return lead

    def update_lead(self, session: Session, ctx: AccessContext, lead_id: uuid.UUID, dto: LeadUpdate) -> Lead:
        lead = leads.get(session, ctx.dealership_id, lead_id)
        changes = dto.model_dump(exclude_unset=True)
        for key, value in changes.items():
            if key == "email" and value is not None:
                value = str(value).lower()
            if key == "lead_type" and value is not None:
                value = LeadType(value).value
            setattr(lead, key, value)
        if not lead.email and not lead.phone:
            session.rollback()
            raise _bad_request("Either email or phone is required")
        lead_scoring_service.recalculate_and_persist(session, lead)

        write_audit_log(
            session,
            action="lead.updated",
            entity_type="lead",
            entity_id=lead.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"fields": sorted(changes.keys())},
        )
        return lead

    def assign_lead(
        self,
        session: Session,
        ctx: AccessContext,
        lead_id: uuid.UUID,
        assigned_to: uuid.UUID | None,
    ) -> Lead:
        if ctx.role == TenantRole.SALES:
            if assigned_to != ctx.user_id:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="Sales users can only assign leads to themselves",
                )
        elif ctx.role not in MANAGING_ROLES:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only admin/manager can assign leads")

        lead = leads.get(session, ctx.dealership_id, lead_id)
        if assigned_to is not None:
            require_active_member(session, ctx.dealership_id, assigned_to)

        previous = lead.assigned_to_user_id
        lead.assigned_to_user_id = assigned_to
        lead_scoring_service.recalculate_and_persist(session, lead)

        write_audit_log(
            session,
            action="lead.assigned",
            entity_type="lead",
            entity_id=lead.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={
                "from": str(previous) if previous else None,
                "to": str(assigned_to) if assigned_to else None,
            },
        )
        emit_event(
            session,
            dealership_id=ctx.dealership_id,
            event_type="lead_assigned",
            entity_type="lead",
            entity_id=lead.id,
            actor_user_id=ctx.user_id,
            payload={"assigned_to_user_id": str(assigned_to) if assigned_to else None},
        )
        return lead

    def change_status(self, session: Session, ctx: AccessContext, lead_id: uuid.UUID, target: LeadStatus) -> Lead:
        if target == LeadStatus.SOLD and ctx.role not in MANAGING_ROLES:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only admin/manager can mark a lead as sold",
            )

        lead = leads.get(session, ctx.dealership_id, lead_id)
        previous = lead.status
        if previous == LeadStatus.LOST and target != LeadStatus.LOST:
            raise _conflict("Lost leads cannot change status")

        lead.status = target.value
        if target == LeadStatus.SOLD:
            lead.sold_at = lead.sold_at or utcnow()
        else:
            lead.sold_at = None
        lead_scoring_service.recalculate_and_persist(session, lead)

        write_audit_log(
            session,
            action="lead.status_changed",
            entity_type="lead",
            entity_id=lead.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"from": previous, "to": lead.status},
        )
        if previous != lead.status:
            emit_event(
                session,
                dealership_id=ctx.dealership_id,
                event_type="lead_status_changed",
                entity_type="lead",
                entity_id=lead.id,
                actor_user_id=ctx.user_id,
                payload={"from": previous, "to": lead.status},
            )
            if target == LeadStatus.SOLD:
                emit_event(
                    session,
                    dealership_id=ctx.dealership_id,
                    event_type="lead_sold",
                    entity_type="lead",
                    entity_id=lead.id,
                    actor_user_id=ctx.user_id,
                    payload={"assigned_to_user_id": str(lead.assigned_to_user_id) if lead.assigned_to_user_id else None},
                )
        return lead

    def explain_score(self, session: Session, ctx: AccessContext, lead_id: uuid.UUID) -> dict[str, object]:
        lead = leads.get(session, ctx.dealership_id, lead_id)
        return lead_scoring_service.explain(session, lead)

    def recalculate_score(self, session: Session, ctx: AccessContext, lead_id: uuid.UUID) -> dict[str, object]:
        lead = leads.get(session, ctx.dealership_id, lead_id)
        return lead_scoring_service.recalculate_and_persist(session, lead).as_dict()

    def options(self, session: Session, ctx: AccessContext) -> LeadOptionsRead:
        memberships = session.scalars(
            select(Membership).where(
                Membership.dealership_id == ctx.dealership_id,
                Membership.is_active.is_(True),
            )
        ).all()
        users = [
            AssignableUser(
                id=item.user_id,
                first_name=item.user.first_name,
                last_name=item.user.last_name,
                email=item.user.email,
                role=item.role,
            )
            for item in memberships
            if item.user.is_active
        ]
        users.sort(key=lambda user: ((user.first_name or "").lower(), (user.last_name or "").lower()))
        return LeadOptionsRead(
            statuses=[item.value for item in LeadStatus],
            lead_types=[item.value for item in LeadType],
            assignable_users=users,
        )

    def timeline(
        self,
        session: Session,
        ctx: AccessContext,
        lead_id: uuid.UUID,
        *,
        limit: int = TIMELINE_DEFAULT_LIMIT,
        cursor: str | None = None,
    ) -> TimelinePage:
        lead = leads.get(session, ctx.dealership_id, lead_id)
        limit = max(1, min(limit, TIMELINE_MAX_LIMIT))
        before: tuple[datetime, uuid.UUID | None] | None = None
        if cursor:
            try:
                before = _parse_timeline_cursor(cursor)
            except ValueError:
                raise _bad_request("cursor must be an ISO timestamp") from None

        items: list[TimelineItem] = []
        sources: list[tuple[Any, str, Any]] = [
            (Message, "MESSAGE", _message_payload),
            (Activity, "ACTIVITY", _activity_payload),
            (Task, "TASK", _task_payload),
            (Appointment, "APPOINTMENT", _appointment_payload),
        ]
        for model, kind, to_payload in sources:
            stmt = select(model).where(model.dealership_id == ctx.dealership_id, model.lead_id == lead.id)
            if before is not None:
                before_at, before_id = before
                if before_id is None:
                    stmt = stmt.where(model.created_at < before_at)
                else:
                    stmt = stmt.where(
                        or_(model.created_at < before_at, and_(model.created_at == before_at, model.id < before_id))
                    )
            stmt = stmt.order_by(model.created_at.desc(), model.id.desc()).limit(limit + 1)
            for row in session.scalars(stmt).all():
                items.append(
                    TimelineItem(id=row.id, type=kind, occurred_at=as_utc(row.created_at), payload=to_payload(row))
                )

        # rows sharing a timestamp are ordered by id so the cursor never skips a tie
        items.sort(key=lambda item: (item.occurred_at, item.id), reverse=True)
        page = items[:limit]
        next_cursor = f"{page[-1].occurred_at.isoformat()}|{page[-1].id}" if len(items) > limit else None
        return TimelinePage(items=page, next_cursor=next_cursor)


def emit_lead_created(session: Session, lead: Lead, *, actor_user_id: uuid.UUID | None) -> None:
    emit_event(
        session,
        dealership_id=lead.dealership_id,
        event_type="lead_created",
        entity_type="lead",
        entity_id=lead.id,
        actor_user_id=actor_user_id,
        payload={
            "status": lead.status,
            "assigned_to_user_id": str(lead.assigned_to_user_id) if lead.assigned_to_user_id else None,
            "source": lead.source,
            "lead_type": lead.lead_type,
        },
    )
    if lead.assigned_to_user_id is not None:
        emit_event(
            session,
            dealership_id=lead.dealership_id,
            event_type="lead_assigned",
            entity_type="lead",
            entity_id=lead.id,
            actor_user_id=actor_user_id,
            payload={"assigned_to_user_id": str(lead.assigned_to_user_id)},
        )


def _message_payload(row: Message) -> dict[str, Any]:
    return {
        "channel": row.channel,
        "direction": row.direction,
        "status": row.status,
        "body": row.body,
        "call_outcome": row.call_outcome,
    }


def _activity_payload(row: Activity) -> dict[str, Any]:
    return {"type": row.type, "subject": row.subject, "body": row.body, "outcome": row.outcome}


def _task_payload(row: Task) -> dict[str, Any]:
    return {"title": row.title, "status": row.status, "due_at": row.due_at.isoformat() if row.due_at else None}


def _appointment_payload(row: Appointment) -> dict[str, Any]:
    return {
        "status": row.status,
        "start_at": as_utc(row.start_at).isoformat(),
        "end_at": as_utc(row.end_at).isoformat(),
    }


class ActivityService:
    def create_activity(self, session: Session, ctx: AccessContext, lead_id: uuid.UUID, dto: ActivityCreate) -> Activity:
        lead = leads.get(session, ctx.dealership_id, lead_id)
        now = utcnow()
        activity = Activity(
            dealership_id=ctx.dealership_id,
            lead_id=lead.id,
            type=dto.type.value,
            subject=dto.subject,
            body=dto.body,
            outcome=dto.outcome,
            created_by_user_id=ctx.user_id,
            created_at=now,
        )
        session.add(activity)
        lead.last_activity_at = now
        # activity row and last_activity_at land together or not at all
        try:
            session.commit()
        except Exception:
            session.rollback()
            raise

        lead_scoring_service.recalculate_and_persist(session, lead)
        write_audit_log(
            session,
            action="activity.created",
            entity_type="activity",
            entity_id=activity.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"lead_id": str(lead.id), "type": activity.type},
        )
        return activity

    def list_activities(self, session: Session, ctx: AccessContext, lead_id: uuid.UUID) -> list[Activity]:
        lead = leads.get(session, ctx.dealership_id, lead_id)
        return list(
            session.scalars(
                select(Activity)
                .where(Activity.dealership_id == ctx.dealership_id, Activity.lead_id == lead.id)
                .order_by(Activity.created_at.desc())
            ).all()
        )


class AppointmentService:
    def create_appointment(self, session: Session, ctx: AccessContext, dto: AppointmentCreate) -> Appointment:
        lead = leads.find(session, ctx.dealership_id, dto.lead_id)
        if lead is None:
            raise _bad_request("Lead does not belong to this dealership")

        appointment = Appointment(
            dealership_id=ctx.dealership_id,
            lead_id=lead.id,
            start_at=as_utc(dto.start_at),
            end_at=as_utc(dto.end_at),
            status=AppointmentStatus.SET.value,
            note=dto.note,
            created_by_user_id=ctx.user_id,
        )
        session.add(appointment)
        session.commit()

        self._after_change(session, ctx, appointment, lead, "appointment_created")
        return appointment

    def list_appointments(
        self,
        session: Session,
        ctx: AccessContext,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        lead_id: uuid.UUID | None = None,
    ) -> list[Appointment]:
        if start is not None and end is not None and as_utc(start) > as_utc(end):
            raise _bad_request("start must be before end")
        stmt = appointments.scoped(ctx.dealership_id)
        if start is not None:
            stmt = stmt.where(Appointment.start_at >= as_utc(start))
        if end is not None:
            stmt = stmt.where(Appointment.start_at <= as_utc(end))
        if lead_id is not None:
            stmt = stmt.where(Appointment.lead_id == lead_id)
        return list(session.scalars(stmt.order_by(Appointment.start_at.asc())).all())

    def confirm(self, session: Session, ctx: AccessContext, appointment_id: uuid.UUID) -> Appointment:
        appointment = appointments.get(session, ctx.dealership_id, appointment_id)
        if appointment.status == AppointmentStatus.CANCELED:
            raise _conflict("Canceled appointments cannot be confirmed")
        return self._transition(session, ctx, appointment, AppointmentStatus.CONFIRMED, None)

    def cancel(self, session: Session, ctx: AccessContext, appointment_id: uuid.UUID) -> Appointment:
        appointment = appointments.get(session, ctx.dealership_id, appointment_id)
        if appointment.status in (AppointmentStatus.SHOWED, AppointmentStatus.NO_SHOW):
            raise _conflict("Completed appointments cannot be canceled")
        return self._transition(session, ctx, appointment, AppointmentStatus.CANCELED, "appointment_canceled")

    def mark_showed(self, session: Session, ctx: AccessContext, appointment_id: uuid.UUID) -> Appointment:
        appointment = appointments.get(session, ctx.dealership_id, appointment_id)
        if appointment.status == AppointmentStatus.CANCELED:
            raise _conflict("Canceled appointments cannot be marked as showed")
        return self._transition(session, ctx, appointment, AppointmentStatus.SHOWED, "appointment_showed")

    def mark_no_show(self, session: Session, ctx: AccessContext, appointment_id: uuid.UUID) -> Appointment:
        appointment = appointments.get(session, ctx.dealership_id, appointment_id)
        if appointment.status == AppointmentStatus.CANCELED:
            raise _conflict("Canceled appointments cannot be marked as no-show")
        return self._transition(session, ctx, appointment, AppointmentStatus.NO_SHOW, "appointment_no_show")

    def _transition(
        self,
        session: Session,
        ctx: AccessContext,
        appointment: Appointment,
        target: AppointmentStatus,
        event_type: str | None,
    ) -> Appointment:
        previous = appointment.status
        appointment.status = target.value
        session.commit()

        lead = leads.get(session, ctx.dealership_id, appointment.lead_id)
        write_audit_log(
            session,
            action="appointment.status_changed",
            entity_type="appointment",
            entity_id=appointment.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"from": previous, "to": appointment.status},
        )
        if event_type is not None and previous != appointment.status:
            self._after_change(session, ctx, appointment, lead, event_type, audit=False)
        else:
            lead_scoring_service.recalculate_and_persist(session, lead)
        return appointment

    @staticmethod
    def _after_change(
        session: Session,
        ctx: AccessContext,
        appointment: Appointment,
        lead: Lead,
        event_type: str,
        *,
        audit: bool = True,
    ) -> None:
        lead_scoring_service.recalculate_and_persist(session, lead)
        if audit:
            write_audit_log(
                session,
                action="appointment.created",
                entity_type="appointment",
                entity_id=appointment.id,
                dealership_id=ctx.dealership_id,
                actor_user_id=ctx.user_id,
                metadata={"lead_id": str(lead.id)},
            )
        emit_event(
            session,
            dealership_id=ctx.dealership_id,
            event_type=event_type,
            entity_type="appointment",
            entity_id=appointment.id,
            actor_user_id=ctx.user_id,
            payload={"lead_id": str(lead.id), "status": appointment.status},
        )


class TaskService:
    def create_task(self, session: Session, ctx: AccessContext, dto: TaskCreate) -> Task:
        lead_id = None
        if dto.lead_id is not None:
            lead_id = leads.get(session, ctx.dealership_id, dto.lead_id).id
        if dto.assigned_to_user_id is not None:
            require_active_member(session, ctx.dealership_id, dto.assigned_to_user_id)

        task = Task(
            dealership_id=ctx.dealership_id,
            lead_id=lead_id,
            title=dto.title,
            description=dto.description,
            due_at=as_utc(dto.due_at),
            assigned_to_user_id=dto.assigned_to_user_id or ctx.user_id,
            created_by_user_id=ctx.user_id,
        )
        session.add(task)
        session.commit()

        write_audit_log(
            session,
            action="task.created",
            entity_type="task",
            entity_id=task.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"lead_id": str(lead_id) if lead_id else None},
        )
        return task

    def list_tasks(
        self,
        session: Session,
        ctx: AccessContext,
        *,
        status_filter: TaskStatus | None = None,
        assigned_to: uuid.UUID | None = None,
        lead_id: uuid.UUID | None = None,
    ) -> list[Task]:
        stmt = tasks.scoped(ctx.dealership_id)
        if status_filter is not None:
            stmt = stmt.where(Task.status == status_filter.value)
        if assigned_to is not None:
            stmt = stmt.where(Task.assigned_to_user_id == assigned_to)
        if lead_id is not None:
            stmt = stmt.where(Task.lead_id == lead_id)
        stmt = stmt.order_by(Task.due_at.asc().nulls_last(), Task.created_at.desc())
        return list(session.scalars(stmt).all())

    def complete(self, session: Session, ctx: AccessContext, task_id: uuid.UUID) -> Task:
        task = tasks.get(session, ctx.dealership_id, task_id)
        if task.status == TaskStatus.CANCELED:
            raise _conflict("Canceled tasks cannot be completed")
        task.status = TaskStatus.DONE.value
        task.completed_at = task.completed_at or utcnow()
        task.snoozed_until = None
        return self._save(session, ctx, task, "task.completed")

    def snooze(self, session: Session, ctx: AccessContext, task_id: uuid.UUID, until: datetime) -> Task:
        task = tasks.get(session, ctx.dealership_id, task_id)
        if task.status in (TaskStatus.DONE, TaskStatus.CANCELED):
            raise _conflict("Closed tasks cannot be snoozed")
        task.status = TaskStatus.SNOOZED.value
        task.snoozed_until = as_utc(until)
        return self._save(session, ctx, task, "task.snoozed")

    def cancel(self, session: Session, ctx: AccessContext, task_id: uuid.UUID) -> Task:
        task = tasks.get(session, ctx.dealership_id, task_id)
        if task.status == TaskStatus.DONE:
            raise _conflict("Completed tasks cannot be canceled")
        task.status = TaskStatus.CANCELED.value
        return self._save(session, ctx, task, "task.canceled")

    @staticmethod
    def _save(session: Session, ctx: AccessContext, task: Task, action: str) -> Task:
        session.commit()
        write_audit_log(
            session,
            action=action,
            entity_type="task",
            entity_id=task.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"status": task.status},
        )
        return task


lead_service = LeadService()
activity_service = ActivityService()
appointment_service = AppointmentService()
task_service = TaskService()
