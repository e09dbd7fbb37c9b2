import logging
import sys
from typing import Any, Awaitable, Callable
from uuid import uuid4

import structlog
from structlog import contextvars
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.config import get_settings

MAX_LOG_VALUE_LENGTH = 2048
TRUNCATION_SUFFIX = "...(truncated)"
_MAX_MASK_DEPTH = 4


def _truncate(value: str) -> str:
    if len(value) <= MAX_LOG_VALUE_LENGTH:
        return value
    return f"{value[:MAX_LOG_VALUE_LENGTH]}{TRUNCATION_SUFFIX}"


def _truncate_large_values(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key, value in list(event_dict.items()):
        if isinstance(value, str):
            event_dict[key] = _truncate(value)
        elif isinstance(value, (bytes, bytearray)):
            event_dict[key] = _truncate(bytes(value).decode("utf-8", errors="replace"))
        elif isinstance(value, list):
            event_dict[key] = [_truncate(item) if isinstance(item, str) else item for item in value]
    return event_dict


def _mask_sensitive_values(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    settings = get_settings()
    redacted_keys = set(settings.redact_fields)
    placeholder = settings.redaction_placeholder

    def _mask(value: Any, depth: int = 0) -> Any:
        if depth > _MAX_MASK_DEPTH:
            return value
        if isinstance(value, dict):
            for key, item in list(value.items()):
                if isinstance(key, str) and key.lower() in redacted_keys:
                    value[key] = placeholder
                    continue
                value[key] = _mask(item, depth + 1)
            return value
        if isinstance(value, (list, tuple)):
            return type(value)(_mask(item, depth + 1) for item in value)
        return value

    return _mask(event_dict)


def configure_logging() -> None:
    settings = get_settings()
    level = logging.getLevelName(settings.log_level)
    logging.basicConfig(level=level, handlers=[logging.StreamHandler(sys.stdout)], format="%(message)s")
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(logger_name).handlers = []

    renderer: Any
    if settings.log_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _mask_sensitive_values,
            _truncate_large_values,
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def bind_log_context(**params: Any) -> None:
    payload = {key: str(value) for key, value in params.items() if value is not None}
    if payload:
        contextvars.bind_contextvars(**payload)


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID", str(uuid4()))

        contextvars.clear_contextvars()
        client_ip = request.client.host if request.client else None
        bind_log_context(request_id=request_id, path=str(request.url.path), client_ip=client_ip)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def get_logger(name: str | None = None, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    if name is not None:
        return structlog.get_logger(name, **initial_values)
    return structlog.get_logger(**initial_values)


__all__ = [
    "RequestIdMiddleware",
    "bind_log_context",
    "configure_logging",
    "get_logger",
]
