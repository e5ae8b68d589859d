from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

auth_failures_total = Counter(
    "auth_failures_total",
    "Total authentication failures by reason",
    ["reason"],
)

tenant_guard_denials_total = Counter(
    "tenant_guard_denials_total",
    "Total tenant guard denials by reason",
    ["reason"],
)

lead_import_rows_total = Counter(
    "lead_import_rows_total",
    "Total ingested lead rows by channel and outcome",
    ["channel", "outcome"],
)

lead_scoring_runs_total = Counter(
    "lead_scoring_runs_total",
    "Total lead scoring runs by path",
    ["path"],
)

lead_scoring_duration_seconds = Histogram(
    "lead_scoring_duration_seconds",
    "Lead scoring duration in seconds",
)

sms_messages_total = Counter(
    "sms_messages_total",
    "Total SMS messages by direction and status",
    ["direction", "status"],
)

auxiliary_write_failures_total = Counter(
    "auxiliary_write_failures_total",
    "Total failed best-effort writes by sink",
    ["sink"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    if path == "/api/integrations/webhooks/{provider}":
        return path
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_auth_failure(reason: str) -> None:
    auth_failures_total.labels(reason=reason).inc()


def observe_tenant_denial(reason: str) -> None:
    tenant_guard_denials_total.labels(reason=reason).inc()


def observe_lead_import(channel: str, success_count: int, failure_count: int) -> None:
    if success_count > 0:
        lead_import_rows_total.labels(channel=channel, outcome="success").inc(success_count)
    if failure_count > 0:
        lead_import_rows_total.labels(channel=channel, outcome="failure").inc(failure_count)


def observe_lead_scoring(path: str, duration: float) -> None:
    lead_scoring_runs_total.labels(path=path).inc()
    lead_scoring_duration_seconds.observe(duration)


def observe_sms(direction: str, status: str) -> None:
    sms_messages_total.labels(direction=direction, status=status).inc()


def observe_auxiliary_write_failure(sink: str) -> None:
    auxiliary_write_failures_total.labels(sink=sink).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
