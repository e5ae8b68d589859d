from __future__ import annotations

import math
import threading
import time
import uuid
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import get_correlation_id
from app.core.config import get_settings
from app.core.context import get_request_context


_WEBHOOK_PREFIXES = ("/api/integrations/webhooks/", "/api/communications/twilio/")
_MAX_BUCKETS = 10_000


@dataclass
class _BucketState:
    tokens: float
    last_refill: float
    window_seconds: int


class _TokenBucketLimiter:
    def __init__(self, max_buckets: int = _MAX_BUCKETS) -> None:
        self._lock = threading.Lock()
        self._max_buckets = max_buckets
        # insertion order doubles as least-recently-used order
        self._buckets: dict[tuple[str, str], _BucketState] = {}

    def __len__(self) -> int:
        return len(self._buckets)

    def take(self, client_key: str, route_group: str, capacity: int, window_seconds: int) -> tuple[bool, int]:
        if capacity <= 0:
            return False, window_seconds

        now = time.monotonic()
        refill_rate = capacity / float(window_seconds)
        key = (client_key, route_group)

        with self._lock:
            current = self._buckets.pop(key, None)
            if current is None:
                self._evict(now)
                current = _BucketState(tokens=float(capacity), last_refill=now, window_seconds=window_seconds)
            self._buckets[key] = current

            elapsed = max(0.0, now - current.last_refill)
            current.tokens = min(float(capacity), current.tokens + (elapsed * refill_rate))
            current.last_refill = now

            if current.tokens < 1.0:
                retry_after = max(1, math.ceil((1.0 - current.tokens) / refill_rate))
                return False, retry_after

            current.tokens -= 1.0
            return True, 0

    def _evict(self, now: float) -> None:
        if len(self._buckets) < self._max_buckets:
            return
        # a bucket idle for a whole window is full again and carries no state
        idle = [key for key, state in self._buckets.items() if now - state.last_refill >= state.window_seconds]
        for key in idle:
            del self._buckets[key]
        while len(self._buckets) >= self._max_buckets:
            del self._buckets[next(iter(self._buckets))]

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = _TokenBucketLimiter()


class WebhookRateLimitMiddleware(BaseHTTPMiddleware):
    """Token-bucket limit for unauthenticated webhook routes, keyed by provider and client address."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled:
            return await call_next(request)

        path = request.url.path
        if request.method.upper() != "POST" or not path.startswith(_WEBHOOK_PREFIXES):
            return await call_next(request)

        allowed, retry_after = _limiter.take(
            client_key=get_request_context(request).client_ip or "unknown",
            route_group=_resolve_route_group(path),
            capacity=settings.rate_limit_webhook_per_minute,
            window_seconds=60,
        )
        if allowed:
            return await call_next(request)

        correlation_id = (
            get_correlation_id()
            or getattr(request.state, "correlation_id", None)
            or request.headers.get("x-correlation-id")
            or str(uuid.uuid4())
        )
        response = JSONResponse(
            status_code=429,
            content={
                "code": "RATE_LIMITED",
                "message": "Too many requests",
                "details": None,
                "correlation_id": correlation_id,
            },
        )
        response.headers["Retry-After"] = str(retry_after)
        response.headers["X-Correlation-Id"] = correlation_id
        return response


def _resolve_route_group(path: str) -> str:
    parts = [part for part in path.split("/") if part]
    if len(parts) < 4:
        return "webhooks"
    return f"{parts[1]}:{parts[3]}"


def reset_rate_limiter() -> None:
    _limiter.clear()
