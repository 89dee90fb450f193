"""
Tests for the HTTP API (subscriptions, reminders, health)
"""
from datetime import date
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from subtracker.config import Settings
from subtracker.container import build_container
from subtracker.main import create_app


@pytest.fixture
def container(calendar, backend):
    settings = Settings(
        DATABASE_URL="sqlite://",
        MIRROR_DATABASE_URL="sqlite://",
        TIMEZONE="UTC",
        STORAGE_NAMESPACE="api-test",
    )
    c = build_container(settings, calendar=calendar, backend=backend)
    yield c
    c.primary_engine.dispose()
    c.mirror_engine.dispose()


@pytest.fixture
def client(container):
    """Test client для FastAPI (lifespan загружает хранилище, планировщик не стартует)"""
    app = create_app(container, start_background=False)
    with TestClient(app) as c:
        yield c


def _create(client, **overrides):
    body = {
        "name": "Netflix",
        "price": "15,99",
        "billing_cycle": "MONTHLY",
        "category": "STREAMING",
        "next_billing_date": "2026-03-20",
    }
    body.update(overrides)
    return client.post("/api/v1/subscriptions/", json=body)


class TestSystem:
    def test_health(self, client):
        assert client.get("/health").text == "ok"

    def test_ready(self, client):
        assert client.get("/ready").status_code == 200


class TestSubscriptionsApi:
    def test_create_normalizes_price(self, client):
        response = _create(client)
        assert response.status_code == 201
        data = response.json()
        assert data["price"] == "15.99"
        assert data["days_until_next_billing"] == 5
        assert data["is_overdue"] is False

    def test_create_without_date_defaults_to_today(self, client):
        data = _create(client, next_billing_date=None, repetition_type="DISABLED").json()
        assert data["next_billing_date"] == "2026-03-15"

    def test_create_empty_name_is_400(self, client):
        response = _create(client, name="  ")
        assert response.status_code == 400

    def test_create_bad_price_is_422(self, client):
        assert _create(client, price="-3").status_code == 422
        assert _create(client, price="1.999").status_code == 422

    def test_create_unknown_cycle_is_400(self, client):
        assert _create(client, billing_cycle="DAILY").status_code == 400

    def test_list_and_get(self, client):
        created = _create(client).json()
        assert [s["id"] for s in client.get("/api/v1/subscriptions/").json()] == [created["id"]]
        assert client.get(f"/api/v1/subscriptions/{created['id']}").json()["name"] == "Netflix"

    def test_get_unknown_is_404(self, client):
        assert client.get(f"/api/v1/subscriptions/{uuid4()}").status_code == 404

    def test_update(self, client):
        created = _create(client).json()
        response = client.put(
            f"/api/v1/subscriptions/{created['id']}",
            json={"name": "Netflix 4K", "price": "22.99", "next_billing_date": "2026-03-20"},
        )
        assert response.status_code == 200
        assert response.json()["id"] == created["id"]
        assert response.json()["price"] == "22.99"

    def test_update_unknown_is_404(self, client):
        response = client.put(f"/api/v1/subscriptions/{uuid4()}", json={"name": "x"})
        assert response.status_code == 404

    def test_delete(self, client):
        created = _create(client).json()
        assert client.delete(f"/api/v1/subscriptions/{created['id']}").status_code == 204
        assert client.delete(f"/api/v1/subscriptions/{created['id']}").status_code == 404

    def test_clear_all(self, client):
        _create(client)
        _create(client, name="Spotify")
        assert client.delete("/api/v1/subscriptions/").status_code == 204
        assert client.get("/api/v1/subscriptions/").json() == []

    def test_mark_paid_and_toggles(self, client):
        sub_id = _create(client).json()["id"]
        paid = client.post(f"/api/v1/subscriptions/{sub_id}/mark-paid").json()
        assert paid["next_billing_date"] == "2026-04-20"
        assert paid["is_paid_for_current_month"] is False

        toggled = client.post(f"/api/v1/subscriptions/{sub_id}/toggle-payment").json()
        assert toggled["next_billing_date"] == "2026-05-20"

        inactive = client.post(f"/api/v1/subscriptions/{sub_id}/toggle-active").json()
        assert inactive["is_active"] is False

    def test_commands_on_unknown_are_404(self, client):
        missing = uuid4()
        for command in ("mark-paid", "toggle-payment", "toggle-active"):
            assert client.post(f"/api/v1/subscriptions/{missing}/{command}").status_code == 404

    def test_upcoming_overdue_summary(self, client):
        _create(client, name="Soon", next_billing_date="2026-03-18")
        _create(client, name="Late", next_billing_date="2026-03-10", repetition_type="DISABLED")
        _create(client, name="Yearly", price="120", billing_cycle="YEARLY",
                next_billing_date="2026-03-28", category="PRODUCTIVITY")

        assert [s["name"] for s in client.get("/api/v1/subscriptions/upcoming").json()] == ["Soon"]
        assert [s["name"] for s in client.get("/api/v1/subscriptions/overdue").json()] == ["Late"]

        summary = client.get("/api/v1/subscriptions/summary").json()
        assert summary["active_count"] == 3
        assert summary["total_monthly"] == "41.98"
        assert summary["total_current_month"] == "151.98"
        assert {c["category"] for c in summary["categories"]} == {"STREAMING", "PRODUCTIVITY"}

    def test_refresh(self, client, container, make_sub):
        sub = container.store.add(make_sub(next_billing_date=date(2026, 3, 1)))
        data = client.post("/api/v1/subscriptions/refresh").json()
        assert data["renewed"] == [str(sub.id)]
        assert client.post("/api/v1/subscriptions/refresh").json()["renewed"] == []


class TestRemindersApi:
    def test_list_reminders(self, client):
        sub_id = _create(client).json()["id"]
        reminders = client.get("/api/v1/reminders/").json()
        assert [r["identifier"] for r in reminders] == [f"subscription_{sub_id}_1days"]
        assert reminders[0]["payload"]["deepLinkURL"] == f"subtracker://subscription/{sub_id}"

    def test_mark_paid_action(self, client):
        sub_id = _create(client).json()["id"]
        data = client.post(
            "/api/v1/reminders/actions",
            json={"action": "MARK_AS_PAID", "payload": {"subscriptionId": sub_id}},
        ).json()
        assert data["handled"] is True
        assert client.get(f"/api/v1/subscriptions/{sub_id}").json()["next_billing_date"] == "2026-04-20"

    def test_view_details_then_pending_action(self, client):
        sub_id = _create(client).json()["id"]
        data = client.post(
            "/api/v1/reminders/actions",
            json={"action": "VIEW_DETAILS", "payload": {"subscriptionId": sub_id}},
        ).json()
        assert data["deep_link"] == f"subtracker://subscription/{sub_id}"

        pending = client.post("/api/v1/reminders/pending-action").json()
        assert pending["subscription_id"] == sub_id
        assert client.post("/api/v1/reminders/pending-action").json() is None

    def test_snooze_action(self, client):
        sub_id = _create(client).json()["id"]
        data = client.post(
            "/api/v1/reminders/actions",
            json={"action": "SNOOZE", "payload": {"subscriptionId": sub_id}},
        ).json()
        assert data["snoozed_until"].startswith("2026-03-16T10:00")

    def test_unknown_action_ignored(self, client):
        data = client.post(
            "/api/v1/reminders/actions",
            json={"action": "DANCE", "payload": {"subscriptionId": str(uuid4())}},
        ).json()
        assert data["handled"] is False

    def test_deep_link(self, client):
        sub_id = _create(client).json()["id"]
        response = client.post("/api/v1/reminders/deep-link", json={"url": f"subtracker://subscription/{sub_id}"})
        assert response.json()["name"] == "Netflix"
        assert client.post(
            "/api/v1/reminders/deep-link", json={"url": "subtracker://subscription/nope"},
        ).status_code == 404
