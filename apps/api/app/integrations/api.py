from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, Query, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.integrations.schemas import (
    CsvImportRequest,
    CsvImportResult,
    IntegrationCreate,
    IntegrationCreated,
    IntegrationEventRead,
    IntegrationRead,
    IntegrationUpdate,
    WebhookResult,
)
from app.integrations.service import integration_service
from app.platform.security.context import AccessContext
from app.platform.security.policies import require_platform_or_tenant_admin, secured


router = APIRouter(prefix="/api/integrations", tags=["integrations"])
webhook_router = APIRouter(prefix="/api/integrations/webhooks", tags=["integrations.webhooks"])

tenant_admin = secured(require_platform_or_tenant_admin())


@router.post("", response_model=IntegrationCreated, status_code=status.HTTP_201_CREATED)
def create_integration(
    dto: IntegrationCreate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(tenant_admin),
) -> IntegrationCreated:
    return IntegrationCreated.model_validate(integration_service.create_integration(db, ctx, dto))


@router.get("", response_model=list[IntegrationRead])
def list_integrations(
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(tenant_admin),
) -> list[IntegrationRead]:
    return [IntegrationRead.model_validate(row) for row in integration_service.list_integrations(db, ctx)]


@router.patch("/{integration_id}", response_model=IntegrationRead)
def update_integration(
    integration_id: uuid.UUID,
    dto: IntegrationUpdate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(tenant_admin),
) -> IntegrationRead:
    return IntegrationRead.model_validate(integration_service.update_integration(db, ctx, integration_id, dto))


@router.get("/events", response_model=list[IntegrationEventRead])
def list_integration_events(
    limit: int = Query(default=50),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(tenant_admin),
) -> list[IntegrationEventRead]:
    return [IntegrationEventRead.model_validate(row) for row in integration_service.list_events(db, ctx, limit)]


@router.post("/import/csv", response_model=CsvImportResult)
def import_csv(
    dto: CsvImportRequest,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(secured()),
) -> CsvImportResult:
    return integration_service.import_csv(
        db,
        ctx,
        dto.csv,
        integration_id=dto.integration_id,
        fallback_source=dto.source,
    )


@webhook_router.post("/{provider}", response_model=WebhookResult)
def integration_webhook(
    provider: str,
    payload: Any = Body(...),
    integration_secret: str | None = Header(default=None, alias="x-integration-secret"),
    db: Session = Depends(get_db),
) -> WebhookResult:
    return integration_service.handle_webhook(db, provider, integration_secret, payload)
