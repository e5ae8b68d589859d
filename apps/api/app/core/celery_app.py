import logging

from celery import Celery

from app.context import bound_request
from app.core.config import get_settings
from app.platform.security.redaction import redact_json

settings = get_settings()
logger = logging.getLogger("app.jobs")

AI_JOB_TASK = "app.ai.process_job"

celery_app = Celery("dealer_crm", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.task_routes = {AI_JOB_TASK: {"queue": settings.ai_queue_name}}


@celery_app.task(name=AI_JOB_TASK)
def process_ai_job(job_name: str, payload: dict, correlation_id: str | None = None) -> dict:
    # hand-enqueued jobs may carry raw values
    safe_payload = redact_json(payload)
    with bound_request(correlation_id):
        logger.info("ai_job.processed", extra={"job_name": job_name, "feature": safe_payload.get("feature")})
    return {"job_name": job_name, "status": "processed"}
