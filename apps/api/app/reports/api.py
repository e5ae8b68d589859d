from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.platform.security.context import AccessContext, TenantRole
from app.platform.security.policies import require_roles, secured
from app.reports.schemas import BreakdownRead, EventLogRead, OverviewRead, ResponseTimeRead
from app.reports.service import reports_service


router = APIRouter(prefix="/api/reports", tags=["reports"])

managers = secured(require_roles(TenantRole.ADMIN, TenantRole.MANAGER))


@router.get("/overview", response_model=OverviewRead)
def overview(
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(managers),
) -> OverviewRead:
    return reports_service.overview(db, ctx.dealership_id)


@router.get("/breakdown", response_model=BreakdownRead)
def breakdown(
    dimension: str = Query(default="source"),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(managers),
) -> BreakdownRead:
    return reports_service.breakdown(db, ctx.dealership_id, dimension, start=start, end=end)


@router.get("/response-time", response_model=ResponseTimeRead)
def response_time(
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(managers),
) -> ResponseTimeRead:
    return reports_service.response_time(db, ctx.dealership_id)


@router.get("/events", response_model=list[EventLogRead])
def event_logs(
    event_type: str | None = Query(default=None),
    entity_type: str | None = Query(default=None),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(secured(require_roles(TenantRole.ADMIN))),
) -> list[EventLogRead]:
    rows = reports_service.list_event_logs(
        db,
        ctx.dealership_id,
        event_type=event_type,
        entity_type=entity_type,
        start=start,
        end=end,
    )
    return [EventLogRead.model_validate(row) for row in rows]
