from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.security_log import SecurityLog
from app.models.user import User

ADMIN_PASSWORD = "changeme123"


def test_login_invalid_credentials_returns_auth001(client: TestClient, admin_user: User, db_session: Session) -> None:
    response = client.post(
        "/api/v1/auth/login",
        json={"email": admin_user.email, "password": "wrongpass123"},
    )
    assert response.status_code == 401
    body = response.json()
    assert body["code"] == "AUTH001"
    assert body["message"] == "incorrect email or password"

    events = db_session.execute(select(SecurityLog).where(SecurityLog.event_type == "login_failed")).scalars().all()
    assert len(events) == 1


def test_login_with_json_email_returns_token(client: TestClient, admin_user: User) -> None:
    response = client.post(
        "/api/v1/auth/login",
        json={"email": admin_user.email, "password": ADMIN_PASSWORD},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["code"] == "SUCCESS"
    assert body["data"]["token_type"] == "bearer"
    assert isinstance(body["data"]["access_token"], str) and body["data"]["access_token"].strip()


def test_login_with_form_username_returns_token(client: TestClient, admin_user: User) -> None:
    response = client.post(
        "/api/v1/auth/login",
        data={"username": admin_user.email.upper(), "password": ADMIN_PASSWORD},
    )
    assert response.status_code == 200
    assert response.json()["data"]["token_type"] == "bearer"


def test_login_missing_password_returns_bad_request(client: TestClient) -> None:
    response = client.post(
        "/api/v1/auth/login",
        json={"email": "missing-password@example.com"},
    )
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "B001"
    assert body["message"] == "Invalid login payload"


def test_invalid_token_returns_auth003(client: TestClient) -> None:
    response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer invalid"})
    assert response.status_code == 401
    body = response.json()
    assert body["code"] == "AUTH003"
    assert body["message"] == "Invalid authentication token"


def test_me_returns_current_user(client: TestClient, admin_headers: dict[str, str], admin_user: User) -> None:
    response = client.get("/api/v1/auth/me", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["email"] == admin_user.email
    assert data["role"] == "admin"

