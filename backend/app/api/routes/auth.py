import json
from typing import Any
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Request, status
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.response import ResponseEnvelope, success_response
from app.core.authz import get_current_user
from app.core.errors import ErrorCode, http_exception
from app.core.security import create_access_token, verify_password
from app.db.session import get_db
from app.logging import get_logger
from app.models.security_log import SecuritySeverity
from app.models.user import User
from app.schemas.auth import LoginRequest, TokenResponse
from app.schemas.user import UserRead
from app.services.security import record_security_event

router = APIRouter(prefix="/auth", tags=["auth"])
logger = get_logger()


async def parse_login_payload(request: Request) -> LoginRequest:
    """Accept the login form as JSON or as an OAuth2 password form."""

    content_type = (request.headers.get("content-type") or "").lower()
    body = await request.body()
    raw_data: dict[str, Any] | None
    if "application/x-www-form-urlencoded" in content_type:
        raw_data = dict(parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True))
    else:
        try:
            decoded = json.loads(body) if body else {}
        except json.JSONDecodeError:
            decoded = None
        raw_data = decoded if isinstance(decoded, dict) else None

    if raw_data is None:
        logger.warning("login_payload_parse_error", content_type=content_type or "missing")
        raise http_exception(status.HTTP_400_BAD_REQUEST, ErrorCode.BAD_REQUEST, "Invalid login payload")

    try:
        return LoginRequest.model_validate(raw_data)
    except ValidationError as exc:
        fields = sorted({".".join(str(part) for part in error.get("loc", ())) or "payload" for error in exc.errors()})
        logger.warning("login_payload_validation_failed", error_fields=fields)
        raise http_exception(status.HTTP_400_BAD_REQUEST, ErrorCode.BAD_REQUEST, "Invalid login payload") from exc


@router.post("/login", response_model=ResponseEnvelope)
def login_user(
    request: Request,
    payload: LoginRequest = Depends(parse_login_payload),
    db: Session = Depends(get_db),
) -> dict:
    identifier = payload.identifier()
    user = db.execute(select(User).where(User.email == identifier)).scalar_one_or_none()
    if not user or not verify_password(payload.password.get_secret_value(), user.hashed_password):
        record_security_event(
            db,
            event_type="login_failed",
            severity=SecuritySeverity.WARNING,
            message=f"Failed login for {identifier}",
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            url=str(request.url),
            method=request.method,
        )
        db.commit()
        raise http_exception(
            status.HTTP_401_UNAUTHORIZED,
            ErrorCode.AUTH_INVALID_CREDENTIALS,
            "incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(subject=str(user.id), claims={"role": user.role.value})
    logger.info("user_authenticated", user_id=str(user.id))
    return success_response(TokenResponse(access_token=access_token).model_dump(), message="Authenticated")


@router.get("/me", response_model=ResponseEnvelope)
def read_current_user(current_user: User = Depends(get_current_user)) -> dict:
    return success_response(UserRead.model_validate(current_user).model_dump(mode="json"))
