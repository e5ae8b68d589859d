from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.crm.models import LeadStatus, LeadType, TaskStatus
from app.crm.schemas import (
    ActivityCreate,
    ActivityRead,
    AppointmentCreate,
    AppointmentRead,
    LeadAssignRequest,
    LeadCreate,
    LeadOptionsRead,
    LeadRead,
    LeadScoreRead,
    LeadStatusUpdate,
    LeadUpdate,
    TaskCreate,
    TaskRead,
    TaskSnoozeRequest,
    TimelinePage,
)
from app.crm.service import activity_service, appointment_service, lead_service, task_service
from app.platform.security.context import AccessContext
from app.platform.security.policies import secured


leads_router = APIRouter(prefix="/api/leads", tags=["crm.leads"])
appointments_router = APIRouter(prefix="/api/appointments", tags=["crm.appointments"])
tasks_router = APIRouter(prefix="/api/tasks", tags=["crm.tasks"])

member = secured()


@leads_router.get("", response_model=list[LeadRead])
def list_leads(
    status_filter: LeadStatus | None = Query(default=None, alias="status"),
    lead_type: LeadType | None = Query(default=None),
    assigned_to: uuid.UUID | None = Query(default=None),
    source: str | None = Query(default=None),
    q: str | None = Query(default=None),
    date_range: str | None = Query(default=None, alias="dateRange"),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> list[LeadRead]:
    rows = lead_service.list_leads(
        db,
        ctx,
        status_filter=status_filter,
        lead_type=lead_type,
        assigned_to=assigned_to,
        source=source,
        q=q,
        date_range=date_range,
    )
    return [LeadRead.model_validate(row) for row in rows]


@leads_router.get("/options", response_model=LeadOptionsRead)
def lead_options(
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> LeadOptionsRead:
    return lead_service.options(db, ctx)


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    dto: LeadCreate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> LeadRead:
    return LeadRead.model_validate(lead_service.create_lead(db, ctx, dto))


@leads_router.get("/{lead_id}", response_model=LeadRead)
def get_lead(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> LeadRead:
    return LeadRead.model_validate(lead_service.get_lead(db, ctx, lead_id))


@leads_router.patch("/{lead_id}", response_model=LeadRead)
def update_lead(
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> LeadRead:
    return LeadRead.model_validate(lead_service.update_lead(db, ctx, lead_id, dto))


@leads_router.post("/{lead_id}/assign", response_model=LeadRead)
def assign_lead(
    lead_id: uuid.UUID,
    dto: LeadAssignRequest,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> LeadRead:
    return LeadRead.model_validate(lead_service.assign_lead(db, ctx, lead_id, dto.assigned_to_user_id))


@leads_router.post("/{lead_id}/status", response_model=LeadRead)
def change_lead_status(
    lead_id: uuid.UUID,
    dto: LeadStatusUpdate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> LeadRead:
    return LeadRead.model_validate(lead_service.change_status(db, ctx, lead_id, dto.status))


@leads_router.get("/{lead_id}/score", response_model=LeadScoreRead)
def explain_lead_score(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> LeadScoreRead:
    return LeadScoreRead.model_validate(lead_service.explain_score(db, ctx, lead_id))


@leads_router.post("/{lead_id}/score/recalculate", response_model=LeadScoreRead)
def recalculate_lead_score(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> LeadScoreRead:
    return LeadScoreRead.model_validate(lead_service.recalculate_score(db, ctx, lead_id))


@leads_router.get("/{lead_id}/timeline", response_model=TimelinePage)
def lead_timeline(
    lead_id: uuid.UUID,
    limit: int = Query(default=25),
    cursor: str | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> TimelinePage:
    return lead_service.timeline(db, ctx, lead_id, limit=limit, cursor=cursor)


@leads_router.post("/{lead_id}/activities", response_model=ActivityRead, status_code=status.HTTP_201_CREATED)
def create_activity(
    lead_id: uuid.UUID,
    dto: ActivityCreate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> ActivityRead:
    return ActivityRead.model_validate(activity_service.create_activity(db, ctx, lead_id, dto))


@leads_router.get("/{lead_id}/activities", response_model=list[ActivityRead])
def list_activities(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> list[ActivityRead]:
    return [ActivityRead.model_validate(row) for row in activity_service.list_activities(db, ctx, lead_id)]


@appointments_router.post("", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
def create_appointment(
    dto: AppointmentCreate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> AppointmentRead:
    return AppointmentRead.model_validate(appointment_service.create_appointment(db, ctx, dto))


@appointments_router.get("", response_model=list[AppointmentRead])
def list_appointments(
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    lead_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> list[AppointmentRead]:
    rows = appointment_service.list_appointments(db, ctx, start=start, end=end, lead_id=lead_id)
    return [AppointmentRead.model_validate(row) for row in rows]


@appointments_router.post("/{appointment_id}/confirm", response_model=AppointmentRead)
def confirm_appointment(
    appointment_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> AppointmentRead:
    return AppointmentRead.model_validate(appointment_service.confirm(db, ctx, appointment_id))


@appointments_router.post("/{appointment_id}/cancel", response_model=AppointmentRead)
def cancel_appointment(
    appointment_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> AppointmentRead:
    return AppointmentRead.model_validate(appointment_service.cancel(db, ctx, appointment_id))


@appointments_router.post("/{appointment_id}/show", response_model=AppointmentRead)
def mark_appointment_showed(
    appointment_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> AppointmentRead:
    return AppointmentRead.model_validate(appointment_service.mark_showed(db, ctx, appointment_id))


@appointments_router.post("/{appointment_id}/no-show", response_model=AppointmentRead)
def mark_appointment_no_show(
    appointment_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> AppointmentRead:
    return AppointmentRead.model_validate(appointment_service.mark_no_show(db, ctx, appointment_id))


@tasks_router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    dto: TaskCreate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> TaskRead:
    return TaskRead.model_validate(task_service.create_task(db, ctx, dto))


@tasks_router.get("", response_model=list[TaskRead])
def list_tasks(
    status_filter: TaskStatus | None = Query(default=None, alias="status"),
    assigned_to: uuid.UUID | None = Query(default=None),
    lead_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> list[TaskRead]:
    rows = task_service.list_tasks(db, ctx, status_filter=status_filter, assigned_to=assigned_to, lead_id=lead_id)
    return [TaskRead.model_validate(row) for row in rows]


@tasks_router.post("/{task_id}/complete", response_model=TaskRead)
def complete_task(
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> TaskRead:
    return TaskRead.model_validate(task_service.complete(db, ctx, task_id))


@tasks_router.post("/{task_id}/snooze", response_model=TaskRead)
def snooze_task(
    task_id: uuid.UUID,
    dto: TaskSnoozeRequest,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> TaskRead:
    return TaskRead.model_validate(task_service.snooze(db, ctx, task_id, dto.snoozed_until))


@tasks_router.post("/{task_id}/cancel", response_model=TaskRead)
def cancel_task(
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(member),
) -> TaskRead:
    return TaskRead.model_validate(task_service.cancel(db, ctx, task_id))
