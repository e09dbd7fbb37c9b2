from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.security_log import SecurityLog, SecuritySeverity
from app.security import BANNED_MESSAGE
from app.services.security import ban_ip, is_ip_banned, unban_ip

BANNED_IP = "203.0.113.7"


def test_security_headers_are_set(client: TestClient) -> None:
    response = client.get("/healthz")
    assert response.status_code == 200
    headers = response.headers
    assert headers["X-Frame-Options"] == "DENY"
    assert headers["X-Content-Type-Options"] == "nosniff"
    assert headers["X-XSS-Protection"] == "1; mode=block"
    assert headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
    assert headers["Cross-Origin-Opener-Policy"] == "same-origin"
    assert "frame-ancestors 'none'" in headers["Content-Security-Policy"]
    assert "geolocation=()" in headers["Permissions-Policy"]
    assert "Strict-Transport-Security" not in headers
    assert "X-Powered-By" not in headers


def test_hsts_only_over_https(client: TestClient) -> None:
    response = client.get("/healthz", headers={"X-Forwarded-Proto": "https"})
    assert response.headers["Strict-Transport-Security"].startswith("max-age=31536000")


def test_banned_ip_is_rejected(client: TestClient, db_session: Session) -> None:
    ban_ip(db_session, BANNED_IP, reason="credential stuffing")

    response = client.get("/healthz", headers={"X-Forwarded-For": BANNED_IP})
    assert response.status_code == 403
    assert response.json() == {"code": "P002", "message": BANNED_MESSAGE, "data": {"title": "Access Denied"}}
    assert response.headers["X-Frame-Options"] == "DENY"

    db_session.expire_all()
    event = db_session.execute(
        select(SecurityLog).where(SecurityLog.event_type == "banned_access")
    ).scalar_one()
    assert event.severity == SecuritySeverity.CRITICAL
    assert event.ip_address == BANNED_IP
    assert event.metadata_["reason"] == "credential stuffing"


def test_other_addresses_pass(client: TestClient, db_session: Session) -> None:
    ban_ip(db_session, BANNED_IP)
    response = client.get("/healthz", headers={"X-Forwarded-For": "198.51.100.1"})
    assert response.status_code == 200


def test_failing_ban_lookup_lets_request_through(
    client: TestClient, db_session: Session, monkeypatch: pytest.MonkeyPatch
) -> None:
    ban_ip(db_session, BANNED_IP)

    def broken_factory():
        raise RuntimeError("session factory unavailable")

    monkeypatch.setattr(client.app.state, "session_factory", broken_factory)
    response = client.get("/healthz", headers={"X-Forwarded-For": BANNED_IP})
    assert response.status_code == 200


def test_expired_ban_is_ignored(client: TestClient, db_session: Session) -> None:
    ban_ip(db_session, BANNED_IP, expires_at=datetime.now(timezone.utc) - timedelta(hours=1))
    response = client.get("/healthz", headers={"X-Forwarded-For": BANNED_IP})
    assert response.status_code == 200


def test_lifted_ban_is_ignored(client: TestClient, db_session: Session) -> None:
    ban_ip(db_session, BANNED_IP)
    assert unban_ip(db_session, BANNED_IP) == 1
    response = client.get("/healthz", headers={"X-Forwarded-For": BANNED_IP})
    assert response.status_code == 200


def test_is_ip_banned(db_session: Session) -> None:
    now = datetime.now(timezone.utc)
    assert is_ip_banned(db_session, BANNED_IP) is False
    assert is_ip_banned(db_session, None) is False

    ban_ip(db_session, BANNED_IP, expires_at=now + timedelta(days=1))
    assert is_ip_banned(db_session, BANNED_IP) is True
    assert is_ip_banned(db_session, BANNED_IP, now=now + timedelta(days=2)) is False


def test_unban_without_active_ban(db_session: Session) -> None:
    assert unban_ip(db_session, BANNED_IP) == 0
    events = db_session.execute(select(SecurityLog.event_type)).scalars().all()
    assert "ip_unbanned" not in events
