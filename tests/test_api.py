# tests/test_api.py

from decimal import Decimal

import pytest
from httpx import AsyncClient

from app.core.config import settings
from app.models.cart import AbandonedCart
from app.models.rep import RepPointsLog
from tests.conftest import CRON_SECRET, ORG_ID

pytestmark = pytest.mark.asyncio

CRON_PATHS = ["/internal/cron/abandoned-carts", "/internal/cron/announcement-emails"]


# --- Cron ---

@pytest.mark.parametrize("path", CRON_PATHS)
async def test_cron_requires_bearer_secret(client: AsyncClient, path):
    response = await client.get(path)
    assert response.status_code == 401

    response = await client.get(path, headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401


@pytest.mark.parametrize("path", CRON_PATHS)
async def test_cron_refuses_when_secret_not_configured(client: AsyncClient, monkeypatch, path):
    monkeypatch.setattr(settings, "CRON_SECRET", "")

    response = await client.get(path, headers={"Authorization": "Bearer "})

    assert response.status_code == 500


async def test_cron_runs_sweep(client: AsyncClient):
    response = await client.get(CRON_PATHS[0], headers={"Authorization": f"Bearer {CRON_SECRET}"})

    assert response.status_code == 200
    data = response.json()
    assert data["job"] == "abandoned-carts"
    assert data["summary"]["sent"] == 0
    assert data["summary"]["errors"] == []


# --- Admin ---

async def test_admin_requires_key(client: AsyncClient):
    response = await client.get("/api/v1/admin/tasks", headers={"X-Admin-Key": "nope", "X-Org-Id": ORG_ID})
    assert response.status_code == 401


async def test_admin_task_list(client: AsyncClient, admin_auth_headers: dict):
    response = await client.get("/api/v1/admin/tasks", headers=admin_auth_headers)

    assert response.status_code == 200
    names = {task["task_name"] for task in response.json()}
    assert names == {"abandoned_carts", "announcement_emails"}


async def test_admin_run_unknown_task_is_rejected(client: AsyncClient, admin_auth_headers: dict):
    response = await client.post("/api/v1/admin/tasks/run", json={"task_name": "nope"}, headers=admin_auth_headers)
    assert response.status_code == 422


async def test_admin_creates_test_order(
    client: AsyncClient, admin_auth_headers: dict, test_event, ticket_types, background_tasks
):
    payload = {
        "event_id": test_event.id,
        "items": [{"ticket_type_id": ticket_types["general"].id, "qty": 2}],
        "customer": {"email": "door@example.com", "first_name": "Box", "last_name": "Office"},
        "total_charged": "41.50",
    }

    response = await client.post("/api/v1/admin/orders", json=payload, headers=admin_auth_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["order"]["payment_ref"].startswith("TEST-")
    assert Decimal(data["order"]["fees"]) == Decimal("1.50")
    assert len(data["tickets"]) == 2

    code = data["tickets"][0]["ticket_code"]
    scan = await client.post(f"/api/v1/admin/tickets/{code}/scan", headers=admin_auth_headers)
    assert scan.status_code == 200
    assert scan.json()["result"] == "admitted"

    refund = await client.post(
        f"/api/v1/admin/orders/{data['order']['id']}/refund", json={"reason": "Comp"}, headers=admin_auth_headers,
    )
    assert refund.status_code == 200
    assert refund.json()["order"]["status"] == "refunded"


async def test_admin_order_for_other_tenant_event(client: AsyncClient, test_event, ticket_types, background_tasks):
    payload = {
        "event_id": test_event.id,
        "items": [{"ticket_type_id": ticket_types["general"].id, "qty": 1}],
        "customer": {"email": "door@example.com", "first_name": "Box", "last_name": "Office"},
    }
    headers = {"X-Admin-Key": "test-admin-key", "X-Org-Id": "org_other"}

    response = await client.post("/api/v1/admin/orders", json=payload, headers=headers)

    assert response.status_code == 404


async def test_admin_manual_points(client: AsyncClient, admin_auth_headers: dict, db_session, test_rep, mock_resend):
    response = await client.post(
        f"/api/v1/admin/reps/{test_rep.id}/points",
        json={"points": 120, "description": "Street team bonus"},
        headers=admin_auth_headers,
    )
    assert response.status_code == 200
    assert response.json() == {"rep_id": test_rep.id, "new_balance": 120, "level": 2}

    history = await client.get(f"/api/v1/admin/reps/{test_rep.id}/points", headers=admin_auth_headers)
    assert history.status_code == 200
    assert history.json()["entries"][0]["created_by"] == "admin"
    assert db_session.query(RepPointsLog).count() == 1


async def test_admin_zero_adjustment_rejected(client: AsyncClient, admin_auth_headers: dict, test_rep):
    response = await client.post(
        f"/api/v1/admin/reps/{test_rep.id}/points",
        json={"points": 0, "description": "Nothing"},
        headers=admin_auth_headers,
    )
    assert response.status_code == 400


async def test_admin_settings_roundtrip(client: AsyncClient, admin_auth_headers: dict, mock_redis):
    response = await client.put(
        "/api/v1/admin/settings/rep_program", json={"data": {"points_per_sale": 25}}, headers=admin_auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["points_per_sale"] == 25
    mock_redis.delete.assert_awaited_once_with(f"tenant_settings:{ORG_ID}:rep_program")

    response = await client.get("/api/v1/admin/settings/rep_program", headers=admin_auth_headers)
    data = response.json()
    assert data["points_per_sale"] == 25
    # Untouched keys keep their defaults
    assert data["enabled"] is True


async def test_admin_settings_rejects_invalid_document(client: AsyncClient, admin_auth_headers: dict):
    response = await client.put(
        "/api/v1/admin/settings/rep_program", json={"data": {"points_per_sale": "lots"}}, headers=admin_auth_headers,
    )
    assert response.status_code == 422


# --- Storefront ---

async def test_checkout_capture_and_unsubscribe(client: AsyncClient, db_session, test_event, ticket_types):
    payload = {
        "org_id": ORG_ID,
        "event_id": test_event.id,
        "email": "shopper@example.com",
        "first_name": "Ash",
        "items": [{"ticket_type_id": ticket_types["vip"].id, "qty": 1}],
    }

    response = await client.post("/api/v1/checkout/capture", json=payload)
    assert response.status_code == 200
    token = response.json()["cart_token"]
    assert response.json()["status"] == "pending"

    response = await client.get("/api/v1/unsubscribe", params={"token": token, "type": "cart_recovery"})
    assert response.status_code == 200
    assert response.json() == {"type": "cart_recovery", "unsubscribed": 1}
    assert db_session.query(AbandonedCart).one().unsubscribed_at is not None


async def test_announcement_signup_endpoint(client: AsyncClient, test_event, mock_resend, mocker, now):
    # Tickets for the test event go live three days after `now`
    mocker.patch("app.services.announcement.utcnow", return_value=now)
    payload = {"org_id": ORG_ID, "event_id": test_event.id, "email": "hype@example.com"}

    response = await client.post("/api/v1/announcements/signup", json=payload)

    assert response.status_code == 201
    assert response.json()["confirmation_sent"] is True


async def test_validate_discount_endpoint(client: AsyncClient, rep_discount):
    response = await client.post("/api/v1/checkout/validate-discount", json={"org_id": ORG_ID, "code": "ava10"})
    assert response.status_code == 200
    assert response.json()["valid"] is True

    response = await client.post("/api/v1/checkout/validate-discount", json={"org_id": ORG_ID, "code": "NOPE"})
    assert response.status_code == 400
