from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi import HTTPException, status


class ErrorCode(str, Enum):
    SUCCESS = "SUCCESS"
    VALIDATION_ERROR = "V001"
    NOT_AUTHENTICATED = "A001"
    AUTH_INVALID_CREDENTIALS = "AUTH001"
    AUTH_TOKEN_INVALID = "AUTH003"
    NO_PERMISSION = "P001"
    IP_BANNED = "P002"
    NOT_FOUND = "N001"
    BAD_REQUEST = "B001"
    BACKUP_NOT_FOUND = "BK404"
    BACKUP_INVALID_NAME = "BK400"
    BACKUP_STORAGE_FAILURE = "BK500"
    BACKUP_PROCESS_FAILURE = "BK502"


def create_error_detail(code: ErrorCode | str, message: str, data: Any | None = None) -> dict[str, Any | None]:
    code_value = code.value if isinstance(code, ErrorCode) else str(code)
    return {"code": code_value, "message": message, "data": data}


def http_exception(
    status_code: int,
    code: ErrorCode | str,
    message: str,
    *,
    data: Any | None = None,
    headers: dict[str, str] | None = None,
) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=create_error_detail(code, message, data),
        headers=headers,
    )


NOT_AUTHENTICATED_EXCEPTION = http_exception(
    status.HTTP_401_UNAUTHORIZED,
    ErrorCode.NOT_AUTHENTICATED,
    "Not authenticated",
    headers={"WWW-Authenticate": "Bearer"},
)
