import pytest
from fastapi.testclient import TestClient

from conftest import OPERATOR_TOKEN, register

from jearch.core.app_factory import create_application
from jearch.core.config import Settings

OPERATOR = {"Authorization": f"Bearer {OPERATOR_TOKEN}"}


@pytest.fixture
def queued_id(client):
    register(client)
    items = client.get("/api/admin/emails", params={"status": "pending"}, headers=OPERATOR).json()["items"]
    assert len(items) == 1
    return items[0]["id"]


def test_operator_lists_and_fetches_queue(client, queued_id):
    listing = client.get("/api/admin/emails", headers=OPERATOR).json()
    assert listing["count"] == 1
    item = listing["items"][0]
    assert item["template"] == "verification"
    assert item["status"] == "pending"
    assert item["attempts"] == 0
    assert item["sent_at"] is None

    detail = client.get(f"/api/admin/emails/{queued_id}", headers=OPERATOR)
    assert detail.status_code == 200
    assert detail.json()["to_address"] == "user@example.com"


def test_operator_cancels_pending_email(client, queued_id):
    response = client.post(
        f"/api/admin/emails/{queued_id}/cancel", json={"reason": "address bounced"}, headers=OPERATOR
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "failed"
    assert body["attempts"] == body["max_attempts"]
    assert "address bounced" in body["error_message"]

    failed = client.get("/api/admin/emails", params={"status": "failed"}, headers=OPERATOR).json()
    assert [item["id"] for item in failed["items"]] == [queued_id]
    assert client.post(f"/api/admin/emails/{queued_id}/cancel", headers=OPERATOR).status_code == 409


def test_unknown_email_returns_404(client):
    assert client.get("/api/admin/emails/missing", headers=OPERATOR).status_code == 404
    assert client.post("/api/admin/emails/missing/cancel", headers=OPERATOR).status_code == 404


def test_rejects_bad_status_filter(client):
    response = client.get("/api/admin/emails", params={"status": "bounced"}, headers=OPERATOR)

    assert response.status_code == 422


def test_requires_operator_token(client):
    assert client.get("/api/admin/emails").status_code == 401
    assert client.get("/api/admin/emails", headers={"Authorization": "Bearer wrong"}).status_code == 401


def test_user_token_is_not_an_operator_token(client):
    register(client)
    access = client.post(
        "/api/users/login", json={"email": "user@example.com", "password": "correct-horse-battery"}
    ).json()["access_token"]

    assert client.get("/api/admin/emails", headers={"Authorization": f"Bearer {access}"}).status_code == 401


def test_operator_endpoints_disabled_without_token(env, monkeypatch):
    monkeypatch.delenv("OPERATOR_TOKEN")
    app = create_application(Settings())

    with TestClient(app) as client:
        assert client.get("/api/admin/emails", headers=OPERATOR).status_code == 403
