import json
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import WEBHOOK_SIGNATURE, plan_spec, stripe_event
from src.seatledger import models
from src.seatledger.core.database import get_db
from src.seatledger.core.security import hash_password
from src.seatledger.main import app
from src.seatledger.utils.timeutils import utcnow


@pytest.fixture
def client(session_factory, processor):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    previous = app.state.processor
    app.state.processor = processor
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        app.state.processor = previous


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_token(client, basic_plan, standard_plan):
    response = client.post(
        "/auth/register",
        json={
            "name": "Acme",
            "billing_email": "owner@acme.com",
            "password": "correct-horse",
            "first_name": "Asha",
        },
    )
    assert response.status_code == 201, response.text
    return response.json()["access_token"]


def test_register_and_view_organization(client, admin_token):
    response = client.get("/organizations/me", headers=_auth(admin_token))

    assert response.status_code == 200
    body = response.json()
    assert body["subscription_status"] == "trialing"
    assert body["active_seat_count"] == 0
    assert body["billing_email"] == "owner@acme.com"

    me = client.get("/auth/me", headers=_auth(admin_token)).json()
    assert me["role"] == "admin"
    assert me["is_bootstrap_admin"] is True


def test_login(client, admin_token):
    ok = client.post("/auth/login", json={"email": "owner@acme.com", "password": "correct-horse"})
    bad = client.post("/auth/login", json={"email": "owner@acme.com", "password": "wrong-pass"})

    assert ok.status_code == 200
    assert ok.json()["access_token"]
    assert bad.status_code == 401


def test_requests_without_token_are_rejected(client, admin_token):
    assert client.get("/organizations/me").status_code == 401


def test_seat_limit_over_http(client, admin_token):
    for i in range(5):
        response = client.post(
            "/users",
            json={"email": f"member{i}@acme.com", "password": "password123"},
            headers=_auth(admin_token),
        )
        assert response.status_code == 201, response.text

    response = client.post(
        "/users",
        json={"email": "sixth@acme.com", "password": "password123"},
        headers=_auth(admin_token),
    )

    assert response.status_code == 403
    assert response.json()["error"] == "SeatLimitExceeded"
    users = client.get("/users", headers=_auth(admin_token)).json()
    assert len(users) == 6


def test_members_cannot_manage_seats(client, admin_token):
    client.post(
        "/users",
        json={"email": "member@acme.com", "password": "password123"},
        headers=_auth(admin_token),
    )
    token = client.post(
        "/auth/login", json={"email": "member@acme.com", "password": "password123"}
    ).json()["access_token"]

    response = client.post(
        "/users",
        json={"email": "another@acme.com", "password": "password123"},
        headers=_auth(token),
    )

    assert response.status_code == 403
    assert response.json()["error"] == "PermissionDenied"


def test_deactivated_member_loses_access(client, admin_token):
    member = client.post(
        "/users",
        json={"email": "member@acme.com", "password": "password123"},
        headers=_auth(admin_token),
    ).json()
    token = client.post(
        "/auth/login", json={"email": "member@acme.com", "password": "password123"}
    ).json()["access_token"]

    response = client.patch(
        f"/users/{member['id']}", json={"is_active": False}, headers=_auth(admin_token)
    )

    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert client.get("/auth/me", headers=_auth(token)).status_code == 403


def test_subscribe_and_confirm_through_webhook(client, admin_token, standard_plan):
    response = client.post(
        "/subscription/subscribe",
        json={"plan_id": standard_plan.id, "quantity": 3},
        headers=_auth(admin_token),
    )
    assert response.status_code == 200, response.text
    checkout = response.json()
    assert checkout["client_secret"]

    (order,) = client.get("/organizations/me/orders", headers=_auth(admin_token)).json()
    assert order["amount"] == 14997
    assert order["status"] == "pending"

    event = stripe_event(
        "evt_paid",
        "invoice.paid",
        {
            "id": order["stripe_invoice_id"],
            "payment_intent": order["stripe_payment_intent_id"],
            "subscription": checkout["subscription_id"],
            "amount_paid": 14997,
        },
        created=utcnow() + timedelta(minutes=1),
    )
    payload = json.dumps(event)
    for _ in range(2):
        delivered = client.post(
            "/subscription/webhook",
            content=payload,
            headers={"stripe-signature": WEBHOOK_SIGNATURE},
        )
        assert delivered.status_code == 200
        assert delivered.json()["received"] is True

    org = client.get("/organizations/me", headers=_auth(admin_token)).json()
    (order,) = client.get("/organizations/me/orders", headers=_auth(admin_token)).json()
    assert org["subscription_status"] == "active"
    assert org["plan_id"] == standard_plan.id
    assert order["status"] == "completed"


def test_subscribe_with_invalid_quantity(client, admin_token, standard_plan, processor):
    response = client.post(
        "/subscription/subscribe",
        json={"plan_id": standard_plan.id, "quantity": 0},
        headers=_auth(admin_token),
    )

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidQuantity"
    assert processor.calls_to("create_subscription") == []


def test_cancel_without_subscription(client, admin_token):
    response = client.post("/subscription/cancel", headers=_auth(admin_token))

    assert response.status_code == 400
    assert response.json()["error"] == "NoActiveSubscription"


def test_webhook_rejects_bad_signature(client):
    response = client.post(
        "/subscription/webhook", content=b"{}", headers={"stripe-signature": "forged"}
    )

    assert response.status_code == 400


def test_unhandled_webhook_is_acknowledged(client):
    event = stripe_event("evt_misc", "customer.updated", {"id": "cus_1"}, created=utcnow())

    response = client.post(
        "/subscription/webhook",
        content=json.dumps(event),
        headers={"stripe-signature": WEBHOOK_SIGNATURE},
    )

    assert response.status_code == 200
    assert response.json()["outcome"] == "ignored"


def test_plan_management_requires_super_admin(client, db, admin_token):
    organization_id = client.get("/organizations/me", headers=_auth(admin_token)).json()["id"]
    super_admin = models.User(
        organization_id=organization_id,
        email="root@platform.com",
        password_hash=hash_password("password123"),
        role="superAdmin",
        is_active=True,
    )
    db.add(super_admin)
    db.commit()
    root_token = client.post(
        "/auth/login", json={"email": "root@platform.com", "password": "password123"}
    ).json()["access_token"]
    spec = plan_spec(name="Plus", price=9999, min_users=5, max_users=100, stripe_price_id="price_plus")

    denied = client.post("/plans", json=spec, headers=_auth(admin_token))
    created = client.post("/plans", json=spec, headers=_auth(root_token))

    assert denied.status_code == 403
    assert created.status_code == 201, created.text
    plan_id = created.json()["id"]
    assert any(plan["id"] == plan_id for plan in client.get("/plans").json())

    assert client.delete(f"/plans/{plan_id}", headers=_auth(root_token)).status_code == 200
    assert all(plan["id"] != plan_id for plan in client.get("/plans").json())

    all_orgs = client.get("/organizations", headers=_auth(root_token))
    assert all_orgs.status_code == 200
    assert [org["id"] for org in all_orgs.json()] == [organization_id]
