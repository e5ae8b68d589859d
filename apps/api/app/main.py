from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

import app.models  # noqa: F401
from app.ai.jobs import CeleryJobQueue
from app.api.routes import router as api_router
from app.core.celery_app import AI_JOB_TASK, celery_app
from app.core.config import get_settings
from app.core.context import RequestContextMiddleware
from app.core.database import Base, engine
from app.logging import configure_logging
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.rate_limit import WebhookRateLimitMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import server_request_hook, setup_otel


configure_logging(get_settings().log_level)
logger = logging.getLogger("app.lifecycle")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)
    logger.info("api.started", extra={"status": "started"})
    yield


settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.state.job_queue = CeleryJobQueue(celery_app, settings.ai_queue_name, AI_JOB_TASK)
app.add_middleware(WebhookRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

setup_otel(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=server_request_hook)
