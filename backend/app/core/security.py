from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core.config import get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

_RESERVED_CLAIMS = frozenset({"sub", "iat", "exp"})


class InvalidTokenError(Exception):
    """Raised when a bearer token cannot be decoded or has expired."""


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # unknown or corrupted hash formats never authenticate
        return False


def create_access_token(
    subject: str,
    *,
    expires_minutes: int | None = None,
    claims: Mapping[str, Any] | None = None,
) -> str:
    settings = get_settings()
    minutes = settings.access_token_expire_minutes if expires_minutes is None else expires_minutes
    if minutes <= 0:
        raise ValueError("Token expiry must be greater than zero minutes")

    issued_at = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        key: value for key, value in (claims or {}).items() if key not in _RESERVED_CLAIMS
    }
    payload.update(
        {
            "sub": subject,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + timedelta(minutes=minutes)).timestamp()),
        }
    )
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"leeway": settings.token_clock_skew_seconds},
        )
    except JWTError as exc:
        raise InvalidTokenError("Invalid token") from exc
    if not payload.get("sub"):
        raise InvalidTokenError("Token has no subject")
    return payload


__all__ = [
    "InvalidTokenError",
    "create_access_token",
    "decode_access_token",
    "hash_password",
    "verify_password",
]
