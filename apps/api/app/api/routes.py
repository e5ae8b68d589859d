from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from app.ai.api import router as ai_router
from app.api.audit import router as audit_router
from app.communications.api import router as communications_router, twilio_router
from app.core.config import get_settings
from app.crm.api import appointments_router, leads_router, tasks_router
from app.dealerships.api import platform_router, settings_router, team_router
from app.identity.api import router as auth_router
from app.integrations.api import router as integrations_router, webhook_router as integration_webhook_router
from app.metrics import generate_metrics_payload, metrics_content_type
from app.platform.security.context import AccessContext
from app.platform.security.policies import require_platform_admin, secured
from app.reports.api import router as reports_router

router = APIRouter()
router.include_router(auth_router)
router.include_router(platform_router)
router.include_router(settings_router)
router.include_router(team_router)
router.include_router(leads_router)
router.include_router(appointments_router)
router.include_router(tasks_router)
router.include_router(communications_router)
router.include_router(twilio_router)
router.include_router(integrations_router)
router.include_router(integration_webhook_router)
router.include_router(reports_router)
router.include_router(ai_router)
router.include_router(audit_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(ctx: AccessContext = Depends(secured(require_platform_admin(), tenant=False))) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
