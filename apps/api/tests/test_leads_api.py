from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.communications.models import ConversationThread, Message
from app.core.database import utcnow
from app.crm.models import Activity, Appointment, Lead, Task
from app.dealerships.models import Dealership
from app.identity.models import User
from app.models.audit import AuditLog, EventLog
from app.platform.security.context import TenantRole
from tests.factories import Seeder


@pytest.fixture()
def team(seed: Seeder) -> dict[str, object]:
    dealership = seed.dealership("d-1", name="Downtown Motors")
    admin = seed.user("admin@d1.test", first_name="Avery", last_name="Admin")
    manager = seed.user("manager@d1.test", first_name="Morgan", last_name="Manager")
    sales = seed.user("sales@d1.test", first_name="Sam", last_name="Seller")
    bdc = seed.user("bdc@d1.test", first_name="Blair", last_name="Bdc")
    seed.member(admin, dealership, TenantRole.ADMIN)
    seed.member(manager, dealership, TenantRole.MANAGER)
    seed.member(sales, dealership, TenantRole.SALES)
    seed.member(bdc, dealership, TenantRole.BDC)
    return {"dealership": dealership, "admin": admin, "manager": manager, "sales": sales, "bdc": bdc}


def _headers(seed: Seeder, team: dict[str, object], role: str) -> dict[str, str]:
    user = team[role]
    dealership = team["dealership"]
    assert isinstance(user, User) and isinstance(dealership, Dealership)
    return seed.headers(user, dealership)


def _create(client: TestClient, headers: dict[str, str], **fields: object) -> dict:
    payload = {"first_name": "Jordan", "last_name": "Diaz", "email": "Jordan@Example.com", **fields}
    response = client.post("/api/leads", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_sales_created_lead_is_self_assigned_scored_and_audited(
    client: TestClient, seed: Seeder, team: dict[str, object], db_session: Session
) -> None:
    sales = team["sales"]
    assert isinstance(sales, User)

    lead = _create(client, _headers(seed, team, "sales"), phone="(555) 123-4567", vehicle_interest="Civic")
    assert lead["email"] == "jordan@example.com"
    assert lead["assigned_to_user_id"] == str(sales.id)
    assert lead["status"] == "NEW"
    assert lead["lead_type"] == "GENERAL"
    assert lead["score"] == 30
    assert lead["score_updated_at"] is not None

    audit = db_session.scalars(select(AuditLog).where(AuditLog.action == "lead.created")).one()
    assert audit.entity_id == lead["id"]
    events = {event.event_type: event for event in db_session.scalars(select(EventLog)).all()}
    assert sorted(events) == ["lead_assigned", "lead_created"]
    assert events["lead_created"].payload["status"] == "NEW"
    assert events["lead_assigned"].payload["assigned_to_user_id"] == str(sales.id)


def test_create_requires_email_or_phone(client: TestClient, seed: Seeder, team: dict[str, object]) -> None:
    response = client.post("/api/leads", json={"first_name": "No", "last_name": "Contact"}, headers=_headers(seed, team, "admin"))
    assert response.status_code == 422


def test_only_managers_can_create_sold_leads(client: TestClient, seed: Seeder, team: dict[str, object]) -> None:
    denied = client.post(
        "/api/leads",
        json={"email": "sold@example.com", "status": "SOLD"},
        headers=_headers(seed, team, "sales"),
    )
    assert denied.status_code == 403
    assert denied.json()["detail"] == "Only admin/manager can mark a lead as sold"

    sold = _create(client, _headers(seed, team, "manager"), status="SOLD")
    assert sold["score"] == 100
    assert sold["sold_at"] is not None


def test_assignee_must_be_active_member(client: TestClient, seed: Seeder, team: dict[str, object]) -> None:
    outsider = seed.user("outsider@else.test")
    response = client.post(
        "/api/leads",
        json={"email": "a@example.com", "assigned_to_user_id": str(outsider.id)},
        headers=_headers(seed, team, "manager"),
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Assignee must be an active member of this dealership"


def test_list_filters(client: TestClient, seed: Seeder, team: dict[str, object]) -> None:
    headers = _headers(seed, team, "admin")
    _create(client, headers, email="web@example.com", source="Website", first_name="Casey")
    _create(client, headers, email="walk@example.com", source="walk-in", lead_type="USED_VEHICLE", first_name="Riley")
    contacted = _create(client, headers, email="call@example.com", source="Phone", first_name="Quinn")
    client.post(f"/api/leads/{contacted['id']}/status", json={"status": "CONTACTED"}, headers=headers)

    by_source = client.get("/api/leads", params={"source": "WEBSITE"}, headers=headers).json()
    by_type = client.get("/api/leads", params={"lead_type": "USED_VEHICLE"}, headers=headers).json()
    by_status = client.get("/api/leads", params={"status": "CONTACTED"}, headers=headers).json()
    by_query = client.get("/api/leads", params={"q": "rile"}, headers=headers).json()
    today = client.get("/api/leads", params={"dateRange": "TODAY"}, headers=headers).json()

    assert [item["email"] for item in by_source] == ["web@example.com"]
    assert [item["email"] for item in by_type] == ["walk@example.com"]
    assert [item["id"] for item in by_status] == [contacted["id"]]
    assert [item["first_name"] for item in by_query] == ["Riley"]
    assert len(today) == 3


def test_date_range_validation(client: TestClient, seed: Seeder, team: dict[str, object]) -> None:
    headers = _headers(seed, team, "admin")

    bad_shape = client.get("/api/leads", params={"dateRange": "yesterday"}, headers=headers)
    bad_value = client.get("/api/leads", params={"dateRange": "2024-01-01,not-a-date"}, headers=headers)
    explicit = client.get(
        "/api/leads",
        params={"dateRange": "2000-01-01T00:00:00Z,2000-01-02T00:00:00Z"},
        headers=headers,
    )

    assert bad_shape.status_code == 400
    assert bad_shape.json()["detail"] == 'dateRange must use format "start,end" with ISO timestamps'
    assert bad_value.status_code == 400
    assert bad_value.json()["detail"] == "dateRange must contain valid ISO timestamps"
    assert explicit.status_code == 200
    assert explicit.json() == []


def test_update_cannot_remove_both_contacts(
    client: TestClient, seed: Seeder, team: dict[str, object], db_session: Session
) -> None:
    headers = _headers(seed, team, "admin")
    lead = _create(client, headers)

    response = client.patch(f"/api/leads/{lead['id']}", json={"email": None, "phone": None}, headers=headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Either email or phone is required"

    stored = db_session.get(Lead, uuid.UUID(lead["id"]))
    assert stored is not None
    assert stored.email == "jordan@example.com"

    updated = client.patch(f"/api/leads/{lead['id']}", json={"vehicle_interest": "F-150"}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["vehicle_interest"] == "F-150"


def test_assignment_rules(client: TestClient, seed: Seeder, team: dict[str, object]) -> None:
    sales = team["sales"]
    manager = team["manager"]
    assert isinstance(sales, User) and isinstance(manager, User)
    lead = _create(client, _headers(seed, team, "admin"))
    path = f"/api/leads/{lead['id']}/assign"

    sales_other = client.post(path, json={"assigned_to_user_id": str(manager.id)}, headers=_headers(seed, team, "sales"))
    bdc_any = client.post(path, json={"assigned_to_user_id": str(sales.id)}, headers=_headers(seed, team, "bdc"))
    sales_self = client.post(path, json={"assigned_to_user_id": str(sales.id)}, headers=_headers(seed, team, "sales"))
    manager_clear = client.post(path, json={"assigned_to_user_id": None}, headers=_headers(seed, team, "manager"))

    assert sales_other.status_code == 403
    assert sales_other.json()["detail"] == "Sales users can only assign leads to themselves"
    assert bdc_any.status_code == 403
    assert bdc_any.json()["detail"] == "Only admin/manager can assign leads"
    assert sales_self.status_code == 200
    assert sales_self.json()["assigned_to_user_id"] == str(sales.id)
    assert manager_clear.status_code == 200
    assert manager_clear.json()["assigned_to_user_id"] is None


def test_status_transitions(client: TestClient, seed: Seeder, team: dict[str, object], db_session: Session) -> None:
    manager_headers = _headers(seed, team, "manager")
    lead = _create(client, manager_headers)
    path = f"/api/leads/{lead['id']}/status"

    sales_sold = client.post(path, json={"status": "SOLD"}, headers=_headers(seed, team, "sales"))
    assert sales_sold.status_code == 403

    sold = client.post(path, json={"status": "SOLD"}, headers=manager_headers)
    assert sold.status_code == 200
    assert sold.json()["sold_at"] is not None
    assert sold.json()["score"] == 100

    reopened = client.post(path, json={"status": "NEGOTIATING"}, headers=manager_headers)
    assert reopened.json()["sold_at"] is None
    assert reopened.json()["score"] < 100

    lost = client.post(path, json={"status": "LOST"}, headers=manager_headers)
    assert lost.status_code == 200
    revived = client.post(path, json={"status": "CONTACTED"}, headers=manager_headers)
    assert revived.status_code == 409
    assert revived.json()["detail"] == "Lost leads cannot change status"

    event_types = db_session.scalars(select(EventLog.event_type).where(EventLog.entity_id == lead["id"])).all()
    assert event_types.count("lead_status_changed") == 3
    assert event_types.count("lead_sold") == 1


def test_options_lists_active_members_by_name(
    client: TestClient, seed: Seeder, team: dict[str, object]
) -> None:
    dealership = team["dealership"]
    assert isinstance(dealership, Dealership)
    former = seed.user("former@d1.test", first_name="Aaron")
    seed.member(former, dealership, TenantRole.SALES, active=False)

    body = client.get("/api/leads/options", headers=_headers(seed, team, "bdc")).json()
    assert "SOLD" in body["statuses"]
    assert "GENERAL" in body["lead_types"]
    assert [user["first_name"] for user in body["assignable_users"]] == ["Avery", "Blair", "Morgan", "Sam"]


def test_score_explain_and_recalculate(client: TestClient, seed: Seeder, team: dict[str, object]) -> None:
    headers = _headers(seed, team, "admin")
    lead = _create(client, headers)

    explained = client.get(f"/api/leads/{lead['id']}/score", headers=headers)
    assert explained.status_code == 200
    body = explained.json()
    assert body["score"] == lead["score"]
    assert body["breakdown"]["contactability"] == 14
    assert body["reasons"][0] == "Contact details on file (+14)"

    recalculated = client.post(f"/api/leads/{lead['id']}/score/recalculate", headers=headers)
    assert recalculated.status_code == 200
    assert recalculated.json() == body


def test_activity_bumps_last_activity_and_score(
    client: TestClient, seed: Seeder, team: dict[str, object], db_session: Session
) -> None:
    headers = _headers(seed, team, "sales")
    lead = _create(client, headers)
    assert lead["last_activity_at"] is None

    created = client.post(
        f"/api/leads/{lead['id']}/activities",
        json={"type": "CALL", "subject": "Intro call", "outcome": "left voicemail"},
        headers=headers,
    )
    assert created.status_code == 201
    assert created.json()["type"] == "CALL"

    refreshed = client.get(f"/api/leads/{lead['id']}", headers=headers).json()
    assert refreshed["last_activity_at"] is not None
    # +10 call engagement, +5 fresh activity
    assert refreshed["score"] == lead["score"] + 15

    listed = client.get(f"/api/leads/{lead['id']}/activities", headers=headers).json()
    assert [item["subject"] for item in listed] == ["Intro call"]
    assert db_session.scalars(select(Activity)).one().created_by_user_id is not None


def test_timeline_merges_sources_newest_first_with_cursor(
    client: TestClient, seed: Seeder, team: dict[str, object], db_session: Session
) -> None:
    dealership = team["dealership"]
    assert isinstance(dealership, Dealership)
    headers = _headers(seed, team, "admin")
    lead_id = uuid.UUID(_create(client, headers)["id"])
    base = utcnow() - timedelta(hours=5)

    thread = ConversationThread(dealership_id=dealership.id, lead_id=lead_id)
    db_session.add(thread)
    db_session.flush()
    db_session.add_all(
        [
            Message(
                dealership_id=dealership.id,
                thread_id=thread.id,
                lead_id=lead_id,
                channel="SMS",
                direction="OUTBOUND",
                body="hello",
                status="SENT",
                created_at=base,
            ),
            Activity(dealership_id=dealership.id, lead_id=lead_id, type="NOTE", body="n", created_at=base + timedelta(hours=1)),
            Task(dealership_id=dealership.id, lead_id=lead_id, title="Follow up", created_at=base + timedelta(hours=2)),
            Appointment(
                dealership_id=dealership.id,
                lead_id=lead_id,
                start_at=base + timedelta(days=1),
                end_at=base + timedelta(days=1, hours=1),
                created_at=base + timedelta(hours=3),
            ),
        ]
    )
    db_session.commit()

    first = client.get(f"/api/leads/{lead_id}/timeline", params={"limit": 3}, headers=headers)
    assert first.status_code == 200
    page = first.json()
    assert [item["type"] for item in page["items"]] == ["APPOINTMENT", "TASK", "ACTIVITY"]
    assert page["next_cursor"] is not None

    second = client.get(
        f"/api/leads/{lead_id}/timeline",
        params={"limit": 3, "cursor": page["next_cursor"]},
        headers=headers,
    ).json()
    assert [item["type"] for item in second["items"]] == ["MESSAGE"]
    assert second["items"][0]["payload"]["direction"] == "OUTBOUND"
    assert second["next_cursor"] is None

    bad_cursor = client.get(f"/api/leads/{lead_id}/timeline", params={"cursor": "yesterday"}, headers=headers)
    assert bad_cursor.status_code == 400
    assert bad_cursor.json()["detail"] == "cursor must be an ISO timestamp"


def test_timeline_cursor_keeps_items_that_share_a_timestamp(
    client: TestClient, seed: Seeder, team: dict[str, object], db_session: Session
) -> None:
    dealership = team["dealership"]
    assert isinstance(dealership, Dealership)
    headers = _headers(seed, team, "admin")
    lead_id = uuid.UUID(_create(client, headers)["id"])
    same_moment = utcnow() - timedelta(hours=1)
    db_session.add_all(
        [
            Activity(dealership_id=dealership.id, lead_id=lead_id, type="NOTE", body=f"n{index}", created_at=same_moment)
            for index in range(3)
        ]
        + [Task(dealership_id=dealership.id, lead_id=lead_id, title="Call back", created_at=same_moment)]
    )
    db_session.commit()

    seen: list[str] = []
    cursor = None
    for _ in range(4):
        params: dict[str, object] = {"limit": 2}
        if cursor:
            params["cursor"] = cursor
        page = client.get(f"/api/leads/{lead_id}/timeline", params=params, headers=headers).json()
        seen += [item["id"] for item in page["items"]]
        cursor = page["next_cursor"]
        if cursor is None:
            break

    assert len(seen) == 4
    assert len(set(seen)) == 4
    assert cursor is None
