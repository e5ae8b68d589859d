from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.security import create_refresh_token, hash_token
from app.identity.models import User
from app.platform.security.context import TenantRole
from tests.factories import DEFAULT_PASSWORD, Seeder


def _login(client: TestClient, email: str, password: str = DEFAULT_PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def test_login_returns_token_pair_and_stores_refresh_hash(client: TestClient, seed: Seeder, db_session: Session) -> None:
    user = seed.user("admin@dealer.test")

    response = _login(client, "ADMIN@dealer.test")
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["access_token"]
    assert body["refresh_token"]

    db_session.refresh(user)
    assert user.refresh_token_hash == hash_token(body["refresh_token"])


def test_login_failures_are_generic(client: TestClient, seed: Seeder, db_session: Session) -> None:
    seed.user("sales@dealer.test")
    inactive = seed.user("gone@dealer.test")
    inactive.is_active = False
    db_session.commit()

    wrong_password = _login(client, "sales@dealer.test", "not-the-password")
    unknown_user = _login(client, "nobody@dealer.test")
    deactivated = _login(client, "gone@dealer.test")
    malformed = _login(client, "not-an-address")

    for response in (wrong_password, unknown_user, deactivated, malformed):
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"


def test_refresh_rotates_and_rejects_replay(client: TestClient, seed: Seeder) -> None:
    seed.user("rotate@dealer.test")
    first = _login(client, "rotate@dealer.test").json()

    rotated = client.post("/api/auth/refresh", json={"refresh_token": first["refresh_token"]})
    assert rotated.status_code == 200
    second = rotated.json()
    assert second["refresh_token"] != first["refresh_token"]

    replay = client.post("/api/auth/refresh", json={"refresh_token": first["refresh_token"]})
    assert replay.status_code == 401
    assert replay.json()["detail"] == "Invalid refresh token"

    again = client.post("/api/auth/refresh", json={"refresh_token": second["refresh_token"]})
    assert again.status_code == 200


def test_refresh_rejects_access_token_and_garbage(client: TestClient, seed: Seeder) -> None:
    seed.user("types@dealer.test")
    tokens = _login(client, "types@dealer.test").json()

    as_access = client.post("/api/auth/refresh", json={"refresh_token": tokens["access_token"]})
    garbage = client.post("/api/auth/refresh", json={"refresh_token": "not-a-jwt"})

    assert as_access.status_code == 401
    assert garbage.status_code == 401


def test_refresh_token_not_issued_by_login_is_rejected(client: TestClient, seed: Seeder) -> None:
    user = seed.user("forged@dealer.test")
    _login(client, "forged@dealer.test")

    # validly signed, but its hash was never stored on the user
    stray = create_refresh_token(user_id=user.id)
    response = client.post("/api/auth/refresh", json={"refresh_token": stray})
    assert response.status_code == 401


def test_logout_revokes_refresh_token(client: TestClient, seed: Seeder, db_session: Session) -> None:
    user = seed.user("logout@dealer.test")
    tokens = _login(client, "logout@dealer.test").json()
    headers = {"Authorization": f"Bearer {tokens['access_token']}"}

    response = client.post("/api/auth/logout", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"success": True}

    db_session.refresh(user)
    assert user.refresh_token_hash is None
    refreshed = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 401


def test_me_is_tenant_exempt_and_lists_memberships(client: TestClient, seed: Seeder) -> None:
    user = seed.user("me@dealer.test", first_name="Morgan", last_name="Lee")
    north = seed.dealership("north-motors", name="North Motors")
    south = seed.dealership("south-motors", name="South Motors")
    seed.member(user, south, TenantRole.MANAGER)
    seed.member(user, north, TenantRole.SALES)

    response = client.get("/api/auth/me", headers=seed.headers(user))
    assert response.status_code == 200
    body = response.json()
    assert body["email"] == "me@dealer.test"
    assert body["platform_role"] == "NONE"
    assert [item["dealership_name"] for item in body["dealerships"]] == ["North Motors", "South Motors"]
    assert [item["role"] for item in body["dealerships"]] == ["SALES", "MANAGER"]


def test_protected_routes_require_bearer_token(client: TestClient) -> None:
    missing = client.get("/api/auth/me")
    invalid = client.get("/api/auth/me", headers={"Authorization": "Bearer nope"})

    assert missing.status_code == 401
    assert missing.json()["detail"] == "Authentication required"
    assert invalid.status_code == 401
    assert invalid.json()["detail"] == "Invalid or expired token"
    assert invalid.headers.get("WWW-Authenticate") == "Bearer"


def test_login_is_public(client: TestClient, db_session: Session) -> None:
    response = client.post("/api/auth/login", json={"email": "missing@dealer.test", "password": "x"})
    assert response.status_code == 401
    assert db_session.query(User).count() == 0
