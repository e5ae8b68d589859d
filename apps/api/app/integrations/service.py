from __future__ import annotations

import hmac
import logging
import secrets
import uuid
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import utcnow
from app.crm.models import Lead, LeadStatus
from app.crm.scoring import lead_scoring_service
from app.crm.service import emit_lead_created
from app.integrations.adapters import LeadAdapter, generic_adapter
from app.integrations.csv_import import FieldError, NormalizedLead, normalize_lead, parse_csv
from app.integrations.models import Integration, IngestionChannel, IntegrationEvent, IntegrationProvider
from app.integrations.schemas import (
    CsvImportResult,
    ImportFailure,
    ImportSuccess,
    IntegrationCreate,
    IntegrationUpdate,
    RowError,
    WebhookResult,
)
from app.metrics import observe_lead_import
from app.otel import get_tracer
from app.platform.security.context import AccessContext
from app.services.audit import emit_event, write_audit_log


logger = logging.getLogger("app.integrations")
tracer = get_tracer("app.integrations")

ADAPTERS: dict[str, LeadAdapter] = {IntegrationProvider.GENERIC.value: generic_adapter}


def secrets_match(expected: str | None, provided: str) -> bool:
    if not expected:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def find_duplicate_reason(session: Session, dealership_id: uuid.UUID, email: str | None, phone: str | None) -> str | None:
    if email:
        existing = session.scalar(
            select(Lead.id).where(Lead.dealership_id == dealership_id, func.lower(Lead.email) == email.lower()).limit(1)
        )
        if existing is not None:
            return "email"
    if phone:
        existing = session.scalar(select(Lead.id).where(Lead.dealership_id == dealership_id, Lead.phone == phone).limit(1))
        if existing is not None:
            return "phone"
    return None


def _format_errors(errors: list[FieldError]) -> str:
    return "; ".join(f"{error.field}: {error.message}" for error in errors)


class IntegrationService:
    def create_integration(self, session: Session, ctx: AccessContext, dto: IntegrationCreate) -> Integration:
        integration = Integration(
            dealership_id=ctx.dealership_id,
            name=dto.name,
            provider=dto.provider.value,
            webhook_secret=dto.webhook_secret or secrets.token_urlsafe(32),
            is_active=dto.is_active,
        )
        session.add(integration)
        session.commit()

        write_audit_log(
            session,
            action="integration.created",
            entity_type="integration",
            entity_id=integration.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"provider": integration.provider},
        )
        return integration

    def list_integrations(self, session: Session, ctx: AccessContext) -> list[Integration]:
        return list(
            session.scalars(
                select(Integration)
                .where(Integration.dealership_id == ctx.dealership_id)
                .order_by(Integration.created_at.desc())
            ).all()
        )

    def update_integration(
        self,
        session: Session,
        ctx: AccessContext,
        integration_id: uuid.UUID,
        dto: IntegrationUpdate,
    ) -> Integration:
        integration = session.scalar(
            select(Integration).where(Integration.id == integration_id, Integration.dealership_id == ctx.dealership_id)
        )
        if integration is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Integration not found")
        changes = dto.model_dump(exclude_unset=True)
        for key, value in changes.items():
            setattr(integration, key, value)
        session.commit()

        write_audit_log(
            session,
            action="integration.updated",
            entity_type="integration",
            entity_id=integration.id,
            dealership_id=ctx.dealership_id,
            actor_user_id=ctx.user_id,
            metadata={"fields": sorted(changes.keys())},
        )
        return integration

    def list_events(self, session: Session, ctx: AccessContext, limit: int = 50) -> list[IntegrationEvent]:
        limit = max(1, min(limit, 200))
        return list(
            session.scalars(
                select(IntegrationEvent)
                .where(IntegrationEvent.dealership_id == ctx.dealership_id)
                .order_by(IntegrationEvent.received_at.desc())
                .limit(limit)
            ).all()
        )

    def import_csv(
        self,
        session: Session,
        ctx: AccessContext,
        csv_text: str,
        *,
        integration_id: uuid.UUID | None = None,
        fallback_source: str | None = None,
    ) -> CsvImportResult:
        """Import leads from CSV text.

        The document is validated as a whole first; after that every row is
        independent and produces exactly one integration event.
        """

        settings = get_settings()
        with tracer.start_as_current_span("integrations.csv_import") as span:
            parsed = parse_csv(csv_text)
            if len(parsed.rows) > settings.csv_import_max_rows:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"CSV import supports up to {settings.csv_import_max_rows} rows per request",
                )

            integration: Integration | None = None
            if integration_id is not None:
                integration = session.scalar(
                    select(Integration).where(
                        Integration.id == integration_id,
                        Integration.dealership_id == ctx.dealership_id,
                        Integration.is_active.is_(True),
                    )
                )
                if integration is None:
                    raise HTTPException(
                        status_code=status.HTTP_400_BAD_REQUEST,
                        detail="integration_id was not found for the active dealership",
                    )

            provider = integration.provider if integration else IntegrationProvider.GENERIC.value
            fallback = (fallback_source or "").strip() or (integration.name if integration else None)
            result = CsvImportResult(total_rows=len(parsed.rows), success_count=0, failure_count=0)

            for row in parsed.rows:
                event = IntegrationEvent(
                    dealership_id=ctx.dealership_id,
                    integration_id=integration.id if integration else None,
                    channel=IngestionChannel.CSV.value,
                    provider=provider,
                    raw_payload=dict(row.raw),
                )
                normalized = normalize_lead(row.canonical)
                if normalized.lead.source is None:
                    normalized.lead.source = fallback

                errors = normalized.errors
                if not errors:
                    reason = find_duplicate_reason(session, ctx.dealership_id, normalized.lead.email, normalized.lead.phone)
                    if reason is not None:
                        errors = [FieldError(field=reason, message=f"skipped duplicate ({reason})")]

                if errors:
                    self._record_failure(session, event, _format_errors(errors))
                    result.failures.append(
                        ImportFailure(
                            row=row.row_number,
                            raw=row.raw,
                            errors=[RowError(field=error.field, message=error.message) for error in errors],
                        )
                    )
                    continue

                try:
                    lead = self._create_lead(session, ctx.dealership_id, normalized.lead, event)
                except SQLAlchemyError as exc:
                    session.rollback()
                    logger.warning("csv_import.row_failed", extra={"status": "failed", "error": str(exc)})
                    self._record_failure(session, event, "row could not be stored")
                    result.failures.append(
                        ImportFailure(row=row.row_number, raw=row.raw, errors=[RowError(field="row", message="row could not be stored")])
                    )
                    continue

                emit_lead_created(session, lead, actor_user_id=ctx.user_id)
                result.successes.append(ImportSuccess(row=row.row_number, lead_id=lead.id, email=lead.email, phone=lead.phone))

            result.success_count = len(result.successes)
            result.failure_count = len(result.failures)
            span.set_attribute("total_rows", result.total_rows)
            span.set_attribute("success_count", result.success_count)

        observe_lead_import(IngestionChannel.CSV.value, result.success_count, result.failure_count)
        logger.info(
            "csv_import.completed",
            extra={
                "integration_id": str(integration.id) if integration else None,
                "total_rows": result.total_rows,
                "success_count": result.success_count,
                "failure_count": result.failure_count,
            },
        )
        if result.failures:
            samples = [
                {"row": item.row, "reasons": [f"{error.field}:{error.message}" for error in item.errors]}
                for item in result.failures[:3]
            ]
            logger.warning("csv_import.row_failures", extra={"reason": samples})

        emit_event(
            session,
            dealership_id=ctx.dealership_id,
            event_type="integration_csv_import_completed",
            entity_type="integration",
            entity_id=integration.id if integration else "csv_import",
            actor_user_id=ctx.user_id,
            payload={
                "integration_id": str(integration.id) if integration else None,
                "total_rows": result.total_rows,
                "success_count": result.success_count,
                "failure_count": result.failure_count,
            },
        )
        return result

    def handle_webhook(
        self,
        session: Session,
        provider_raw: str,
        provided_secret: str | None,
        payload: Any,
    ) -> WebhookResult:
        provider = provider_raw.strip().upper()
        adapter = ADAPTERS.get(provider)
        if adapter is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unsupported integration provider: {provider_raw}",
            )
        if not provided_secret:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing integration webhook secret")

        candidates = session.scalars(
            select(Integration).where(Integration.provider == provider, Integration.is_active.is_(True))
        ).all()
        integration = next((item for item in candidates if secrets_match(item.webhook_secret, provided_secret)), None)
        if integration is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid integration webhook secret")

        event = IntegrationEvent(
            dealership_id=integration.dealership_id,
            integration_id=integration.id,
            channel=IngestionChannel.WEBHOOK.value,
            provider=provider,
            raw_payload=payload if isinstance(payload, dict) else {"value": payload},
        )

        try:
            adapted = adapter.adapt(provider, payload)
        except HTTPException as exc:
            message = str(exc.detail)
            self._record_failure(session, event, message)
            observe_lead_import(IngestionChannel.WEBHOOK.value, 0, 1)
            self._audit_webhook(session, integration, event, parsed_ok=False, error=message)
            return WebhookResult(ok=False, integration_event_id=event.id, error=message)

        if adapted.lead.source is None:
            adapted.lead.source = integration.name
        try:
            lead = self._create_lead(session, integration.dealership_id, adapted.lead, event)
        except SQLAlchemyError as exc:
            session.rollback()
            message = "lead could not be stored"
            logger.warning("integration.webhook_failed", extra={"integration_id": str(integration.id), "error": str(exc)})
            self._record_failure(session, event, message)
            observe_lead_import(IngestionChannel.WEBHOOK.value, 0, 1)
            self._audit_webhook(session, integration, event, parsed_ok=False, error=message)
            return WebhookResult(ok=False, integration_event_id=event.id, error=message)
        emit_lead_created(session, lead, actor_user_id=None)
        observe_lead_import(IngestionChannel.WEBHOOK.value, 1, 0)
        self._audit_webhook(session, integration, event, parsed_ok=True, lead_id=lead.id)
        logger.info(
            "integration.webhook_ingested",
            extra={"integration_id": str(integration.id), "integration_event_id": str(event.id), "lead_id": str(lead.id)},
        )
        return WebhookResult(ok=True, integration_event_id=event.id, lead_id=lead.id)

    @staticmethod
    def _record_failure(session: Session, event: IntegrationEvent, message: str) -> None:
        event.parsed_ok = False
        event.parsed_payload = None
        event.lead_id = None
        event.error = message
        event.processed_at = utcnow()
        session.add(event)
        session.commit()

    @staticmethod
    def _create_lead(
        session: Session,
        dealership_id: uuid.UUID,
        normalized: NormalizedLead,
        event: IntegrationEvent,
    ) -> Lead:
        lead = Lead(
            dealership_id=dealership_id,
            first_name=normalized.first_name,
            last_name=normalized.last_name,
            email=normalized.email,
            phone=normalized.phone,
            vehicle_interest=normalized.vehicle_interest,
            source=normalized.source,
            lead_type=normalized.lead_type,
            status=normalized.status,
            sold_at=utcnow() if normalized.status == LeadStatus.SOLD else None,
        )
        session.add(lead)
        session.flush()
        lead_scoring_service.recalculate_and_persist(session, lead, commit=False)

        event.parsed_ok = True
        event.parsed_payload = normalized.as_payload()
        event.lead_id = lead.id
        event.error = None
        event.processed_at = utcnow()
        session.add(event)
        # lead, score and event outcome land together or not at all
        session.commit()
        return lead

    @staticmethod
    def _audit_webhook(
        session: Session,
        integration: Integration,
        event: IntegrationEvent,
        *,
        parsed_ok: bool,
        lead_id: uuid.UUID | None = None,
        error: str | None = None,
    ) -> None:
        write_audit_log(
            session,
            action="integration_event_ingested",
            entity_type="integration_event",
            entity_id=event.id,
            dealership_id=integration.dealership_id,
            metadata={
                "provider": integration.provider,
                "integration_id": str(integration.id),
                "parsed_ok": parsed_ok,
                "lead_id": str(lead_id) if lead_id else None,
                "error": error,
            },
        )


integration_service = IntegrationService()
