from __future__ import annotations

import uuid
from typing import Callable, Optional

from fastapi import Depends, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.errors import ErrorCode, http_exception
from app.core.security import InvalidTokenError, decode_access_token
from app.db.session import get_db
from app.logging import bind_log_context, get_logger
from app.models.security_log import SecuritySeverity
from app.models.user import User, UserRole
from app.services.security import record_security_event

logger = get_logger()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)

MANAGE_BACKUPS = "backups:manage"

CapabilityCheck = Callable[[User, str], bool]


def _invalid_token(message: str = "Invalid authentication token"):
    return http_exception(
        status.HTTP_401_UNAUTHORIZED,
        ErrorCode.AUTH_TOKEN_INVALID,
        message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    if not token:
        raise http_exception(
            status.HTTP_401_UNAUTHORIZED,
            ErrorCode.NOT_AUTHENTICATED,
            "Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_access_token(token)
        user_id = uuid.UUID(str(payload["sub"]))
    except (InvalidTokenError, KeyError, ValueError):
        raise _invalid_token() from None

    user = db.get(User, user_id)
    if user is None:
        raise _invalid_token("Authentication credentials are no longer valid")
    bind_log_context(user_id=str(user.id))
    return user


def default_capability_check(user: User, capability: str) -> bool:
    """Admins and allow-listed emails hold every administrative capability."""

    if user.role == UserRole.ADMIN:
        return True
    allowed = get_settings().admin_emails
    return bool(user.email) and user.email.lower() in allowed


def get_capability_check() -> CapabilityCheck:
    return default_capability_check


def require_capability(capability: str) -> Callable[..., User]:
    def dependency(
        request: Request,
        current_user: User = Depends(get_current_user),
        check: CapabilityCheck = Depends(get_capability_check),
        db: Session = Depends(get_db),
    ) -> User:
        client_ip = request.client.host if request.client else None
        granted = check(current_user, capability)
        record_security_event(
            db,
            event_type="admin_access" if granted else "admin_access_denied",
            severity=SecuritySeverity.INFO if granted else SecuritySeverity.WARNING,
            message=f"{request.method} {request.url.path}",
            ip_address=client_ip,
            user_agent=request.headers.get("user-agent"),
            user=current_user,
            url=str(request.url),
            method=request.method,
            metadata={"capability": capability},
        )
        db.commit()

        if not granted:
            logger.warning("capability_denied", user_id=str(current_user.id), capability=capability)
            raise http_exception(
                status.HTTP_403_FORBIDDEN,
                ErrorCode.NO_PERMISSION,
                "Administrator privileges are required",
                data={"capability": capability},
            )
        return current_user

    return dependency


__all__ = [
    "CapabilityCheck",
    "MANAGE_BACKUPS",
    "default_capability_check",
    "get_capability_check",
    "get_current_user",
    "oauth2_scheme",
    "require_capability",
]
