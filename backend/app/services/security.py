from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.logging import get_logger
from app.models.banned_ip import BannedIp
from app.models.security_log import SecurityLog, SecuritySeverity
from app.models.user import User

logger = get_logger()


def find_active_ban(session: Session, ip_address: str, *, now: datetime | None = None) -> BannedIp | None:
    reference = now or datetime.now(timezone.utc)
    stmt = (
        select(BannedIp)
        .where(BannedIp.ip_address == ip_address, BannedIp.is_active.is_(True))
        .order_by(BannedIp.banned_at.desc())
    )
    for ban in session.execute(stmt).scalars():
        if ban.is_currently_active(reference):
            return ban
    return None


def is_ip_banned(session: Session, ip_address: str | None, *, now: datetime | None = None) -> bool:
    if not ip_address:
        return False
    return find_active_ban(session, ip_address, now=now) is not None


def ban_ip(
    session: Session,
    ip_address: str,
    *,
    reason: str | None = None,
    banned_by: User | None = None,
    expires_at: datetime | None = None,
) -> BannedIp:
    ban = BannedIp(
        ip_address=ip_address.strip(),
        reason=reason,
        banned_by=banned_by.id if banned_by else None,
        banned_at=datetime.now(timezone.utc),
        expires_at=expires_at,
        is_active=True,
    )
    session.add(ban)
    record_security_event(
        session,
        event_type="ip_banned",
        severity=SecuritySeverity.WARNING,
        message=f"IP address {ban.ip_address} banned",
        ip_address=ban.ip_address,
        user=banned_by,
        metadata={"reason": reason, "expires_at": expires_at.isoformat() if expires_at else None},
    )
    session.commit()
    session.refresh(ban)
    logger.info("ip_banned", ip_address=ban.ip_address, expires_at=expires_at.isoformat() if expires_at else None)
    return ban


def unban_ip(session: Session, ip_address: str, *, actor: User | None = None) -> int:
    """Deactivate every active ban of an address and return how many were lifted."""

    result = session.execute(
        update(BannedIp)
        .where(BannedIp.ip_address == ip_address.strip(), BannedIp.is_active.is_(True))
        .values(is_active=False)
    )
    lifted = result.rowcount or 0
    if lifted:
        record_security_event(
            session,
            event_type="ip_unbanned",
            severity=SecuritySeverity.INFO,
            message=f"IP address {ip_address} unbanned",
            ip_address=ip_address,
            user=actor,
            metadata={"lifted": lifted},
        )
    session.commit()
    logger.info("ip_unbanned", ip_address=ip_address, lifted=lifted)
    return lifted


def record_security_event(
    session: Session,
    *,
    event_type: str,
    message: str,
    severity: SecuritySeverity = SecuritySeverity.INFO,
    ip_address: str | None = None,
    user_agent: str | None = None,
    user: User | None = None,
    user_id: uuid.UUID | None = None,
    url: str | None = None,
    method: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> SecurityLog:
    entry = SecurityLog(
        event_type=event_type,
        severity=severity,
        message=message,
        ip_address=ip_address,
        user_agent=(user_agent or None) and user_agent[:512],
        user_id=user.id if user else user_id,
        url=(url or None) and url[:2048],
        method=method,
        metadata_=metadata or {},
    )
    session.add(entry)
    return entry


__all__ = ["ban_ip", "find_active_ban", "is_ip_banned", "record_security_event", "unban_ip"]
