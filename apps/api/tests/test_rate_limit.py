from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.middleware.rate_limit import _TokenBucketLimiter, reset_rate_limiter
from app.platform.security.context import TenantRole
from tests.factories import Seeder


@pytest.fixture(autouse=True)
def configure_rate_limiter_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_WEBHOOK_PER_MINUTE", "2")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    reset_rate_limiter()
    get_settings.cache_clear()


def test_integration_webhooks_are_rate_limited(client: TestClient) -> None:
    responses = [
        client.post(
            "/api/integrations/webhooks/generic",
            json={"email": "a@example.com"},
            headers={"x-integration-secret": "unknown-secret-value", "x-correlation-id": f"rl-{index}"},
        )
        for index in range(4)
    ]

    assert [response.status_code for response in responses[:2]] == [401, 401]
    limited = [response for response in responses if response.status_code == 429]
    assert len(limited) == 2

    first_limited = limited[0]
    body = first_limited.json()
    assert body == {
        "code": "RATE_LIMITED",
        "message": "Too many requests",
        "details": None,
        "correlation_id": body["correlation_id"],
    }
    assert body["correlation_id"] is not None
    assert int(first_limited.headers["Retry-After"]) >= 1


def test_twilio_and_integration_buckets_are_separate(client: TestClient) -> None:
    for _ in range(2):
        client.post("/api/integrations/webhooks/generic", json={}, headers={"x-integration-secret": "x" * 20})

    twilio = client.post("/api/communications/twilio/status", data={"MessageSid": "SM1"})

    # rejected for its signature, not throttled
    assert twilio.status_code == 400


def test_authenticated_routes_are_not_rate_limited(client: TestClient, seed: Seeder) -> None:
    dealership = seed.dealership("d-1")
    user = seed.user("sales@d1.test")
    seed.member(user, dealership, TenantRole.SALES)
    headers = seed.headers(user, dealership)

    responses = [
        client.post("/api/leads", json={"email": f"lead{index}@example.com"}, headers=headers) for index in range(5)
    ]
    responses += [client.get("/api/leads", headers=headers) for _ in range(5)]

    assert all(response.status_code != 429 for response in responses)


def _post_from(client: TestClient, address: str):  # type: ignore[no-untyped-def]
    return client.post(
        "/api/integrations/webhooks/generic",
        json={},
        headers={"x-integration-secret": "x" * 20, "x-forwarded-for": address},
    )


def test_forwarded_for_is_ignored_without_a_trusted_proxy(client: TestClient) -> None:
    statuses = [_post_from(client, f"203.0.113.{index}").status_code for index in range(4)]

    assert statuses[2:] == [429, 429]


def test_forwarded_for_keys_buckets_behind_a_trusted_proxy(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TRUST_FORWARDED_FOR", "true")
    get_settings.cache_clear()

    rotating = [_post_from(client, f"203.0.113.{index}").status_code for index in range(4)]
    repeated = [_post_from(client, "198.51.100.7").status_code for _ in range(3)]

    assert 429 not in rotating
    assert repeated[-1] == 429


def test_limiter_bucket_table_stays_bounded() -> None:
    limiter = _TokenBucketLimiter(max_buckets=3)

    for index in range(10):
        limiter.take(f"10.0.0.{index}", "integrations:generic", capacity=2, window_seconds=60)

    assert len(limiter) == 3


def test_limiter_evicts_least_recently_used_client_first() -> None:
    limiter = _TokenBucketLimiter(max_buckets=2)
    limiter.take("a", "webhooks", capacity=1, window_seconds=60)
    limiter.take("b", "webhooks", capacity=1, window_seconds=60)
    limiter.take("a", "webhooks", capacity=1, window_seconds=60)

    limiter.take("c", "webhooks", capacity=1, window_seconds=60)

    # "a" was touched after "b", so it keeps its drained bucket
    assert limiter.take("a", "webhooks", capacity=1, window_seconds=60)[0] is False
    assert len(limiter) == 2
