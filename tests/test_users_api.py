from conftest import PASSWORD, login, register

from jearch.domain.models import EmailStatus, EmailTemplate


def _queued(container, template):
    return [item for item in container.delivery_queue.list(EmailStatus.PENDING) if item.template is template]


def test_register_queues_verification_email(client, container):
    body = register(client)

    assert body["email"] == "user@example.com"
    queued = _queued(container, EmailTemplate.VERIFICATION)
    assert len(queued) == 1
    assert queued[0].to_address == "user@example.com"
    assert queued[0].user_id == body["user_id"]
    assert queued[0].attempts == 0
    assert queued[0].max_attempts == 3

    user = container.user_service.get_by_email("user@example.com")
    assert user.verification_token in queued[0].body_text


def test_register_rejects_duplicates_and_weak_passwords(client):
    register(client)

    assert client.post(
        "/api/users/register", json={"email": "user@example.com", "password": PASSWORD}
    ).status_code == 400
    assert client.post(
        "/api/users/register", json={"email": "short@example.com", "password": "short"}
    ).status_code == 400
    assert client.post(
        "/api/users/register", json={"email": "not-an-email", "password": PASSWORD}
    ).status_code == 422


def test_verify_email_marks_user_verified(client, container):
    register(client)
    token = container.user_service.get_by_email("user@example.com").verification_token

    assert client.post("/api/users/verify-email", json={"token": token}).status_code == 200
    assert client.post("/api/users/verify-email", json={"token": token}).status_code == 400

    access = login(client).json()["access_token"]
    profile = client.get("/api/users/me", headers={"Authorization": f"Bearer {access}"}).json()
    assert profile["is_verified"] is True
    assert profile["email_confirmed_at"] is not None


def test_resend_verification_answers_uniformly(client, container):
    register(client)

    known = client.post("/api/users/resend-verification", json={"email": "user@example.com"})
    unknown = client.post("/api/users/resend-verification", json={"email": "ghost@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert len(_queued(container, EmailTemplate.VERIFICATION)) == 2


def test_password_reset_flow(client, container):
    register(client)

    unknown = client.post("/api/users/password-reset", json={"email": "ghost@example.com"})
    known = client.post("/api/users/password-reset", json={"email": "user@example.com"})

    assert unknown.status_code == known.status_code == 202
    assert unknown.json() == known.json()
    assert [item.to_address for item in _queued(container, EmailTemplate.PASSWORD_RESET)] == ["user@example.com"]

    token = container.user_service.get_by_email("user@example.com").reset_token
    new_password = "an-even-better-passphrase"
    confirm = client.post("/api/users/password-reset/confirm", json={"token": token, "password": new_password})
    assert confirm.status_code == 200

    assert login(client).status_code == 401
    assert login(client, password=new_password).status_code == 200
    assert client.post(
        "/api/users/password-reset/confirm", json={"token": token, "password": new_password}
    ).status_code == 400


def test_profile_requires_token(client):
    assert client.get("/api/users/me").status_code == 401


def test_health_reports_dispatcher_state(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "email_dispatcher": False}
