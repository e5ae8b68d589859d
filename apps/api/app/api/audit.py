from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.platform.security.context import AccessContext, TenantRole
from app.platform.security.policies import require_roles, secured
from app.services.audit import list_audit_logs


router = APIRouter(prefix="/api/audit", tags=["audit"])


class AuditLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    actor_user_id: uuid.UUID | None
    action: str
    entity_type: str
    entity_id: str | None
    metadata: dict[str, Any] = Field(validation_alias="event_metadata")
    correlation_id: str | None
    created_at: datetime


@router.get("", response_model=list[AuditLogRead])
def list_audit(
    limit: int = Query(default=50),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(secured(require_roles(TenantRole.ADMIN, TenantRole.MANAGER))),
) -> list[AuditLogRead]:
    return [AuditLogRead.model_validate(row) for row in list_audit_logs(db, ctx.dealership_id, limit)]
