from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.core.database import utcnow
from app.metrics import observe_auxiliary_write_failure
from app.models.audit import AuditLog, EventLog
from app.platform.security.redaction import redact_json


logger = logging.getLogger("app.audit")

AUDIT_LIST_MAX_LIMIT = 200


def _commit_auxiliary(db: Session, row: AuditLog | EventLog, sink: str, label: str) -> bool:
    # Callers commit their primary write first, so a rollback here only discards this row.
    db.add(row)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        observe_auxiliary_write_failure(sink)
        logger.warning(f"{sink}_write_failed", extra={"action": label, "error": str(exc)})
        return False
    return True


def write_audit_log(
    db: Session,
    *,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID | str | None,
    dealership_id: uuid.UUID | None = None,
    actor_user_id: uuid.UUID | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog | None:
    entry = AuditLog(
        dealership_id=dealership_id,
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        event_metadata=redact_json(metadata or {}),
        correlation_id=get_correlation_id(),
        created_at=utcnow(),
    )
    if not _commit_auxiliary(db, entry, "audit", action):
        return None
    return entry


def emit_event(
    db: Session,
    *,
    dealership_id: uuid.UUID,
    event_type: str,
    entity_type: str,
    entity_id: uuid.UUID | str | None,
    actor_user_id: uuid.UUID | None = None,
    payload: dict[str, Any] | None = None,
) -> EventLog | None:
    event = EventLog(
        dealership_id=dealership_id,
        actor_user_id=actor_user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        payload=redact_json(payload or {}),
        correlation_id=get_correlation_id(),
        occurred_at=utcnow(),
    )
    if not _commit_auxiliary(db, event, "event_log", event_type):
        return None
    return event


def list_audit_logs(db: Session, dealership_id: uuid.UUID, limit: int = 50) -> list[AuditLog]:
    limit = max(1, min(limit, AUDIT_LIST_MAX_LIMIT))
    return list(
        db.scalars(
            select(AuditLog)
            .where(AuditLog.dealership_id == dealership_id)
            .order_by(AuditLog.created_at.desc())
            .limit(limit)
        ).all()
    )
