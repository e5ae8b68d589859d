from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from celery import Celery
from fastapi import Request

from app.context import get_correlation_id


class JobQueue(Protocol):
    """Background job sink. Payloads handed to ``enqueue`` are already redacted."""

    def enqueue(self, job_name: str, payload: dict[str, Any]) -> None:
        ...


class CeleryJobQueue:
    def __init__(self, app: Celery, queue_name: str, task_name: str) -> None:
        self.app = app
        self.queue_name = queue_name
        self.task_name = task_name

    def enqueue(self, job_name: str, payload: dict[str, Any]) -> None:
        self.app.send_task(
            self.task_name,
            args=[job_name, payload],
            kwargs={"correlation_id": get_correlation_id()},
            queue=self.queue_name,
        )


@dataclass
class InMemoryJobQueue:
    jobs: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    fail_with: Exception | None = None

    def enqueue(self, job_name: str, payload: dict[str, Any]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.jobs.append((job_name, payload))


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue
