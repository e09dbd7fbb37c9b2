from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from app.core.config import Settings, get_settings
from app.core.errors import ErrorCode, create_error_detail
from app.db.session import session_scope
from app.logging import get_logger
from app.models.security_log import SecuritySeverity
from app.observability.metrics import record_banned_request
from app.services.security import find_active_ban, record_security_event

logger = get_logger()

BANNED_MESSAGE = "Your IP address has been banned from accessing this website."
HSTS_VALUE = "max-age=31536000; includeSubDomains; preload"
_STRIPPED_HEADERS = ("server", "x-powered-by")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:  # type: ignore[override]
        response = await call_next(request)
        settings = get_settings()
        headers = response.headers
        headers["X-Frame-Options"] = "DENY"
        headers["X-Content-Type-Options"] = "nosniff"
        headers["X-XSS-Protection"] = "1; mode=block"
        headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        headers["Content-Security-Policy"] = settings.content_security_policy
        headers["Permissions-Policy"] = settings.permissions_policy
        headers["Cross-Origin-Opener-Policy"] = "same-origin"
        if request.url.scheme == "https":
            headers["Strict-Transport-Security"] = HSTS_VALUE
        for name in _STRIPPED_HEADERS:
            if name in headers:
                del headers[name]
        return response


def _session_factory(request: Request) -> Callable[[], Session] | None:
    return getattr(request.app.state, "session_factory", None)


class BannedIpMiddleware(BaseHTTPMiddleware):
    """Rejects requests from addresses with an active ban.

    The lookup failing never blocks traffic: the error is logged and the
    request continues.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:  # type: ignore[override]
        client_ip = request.client.host if request.client else None
        if not client_ip or not get_settings().banned_ip_check_enabled:
            return await call_next(request)

        try:
            banned = await run_in_threadpool(self._check_and_log, request, client_ip)
        except Exception:
            logger.exception("banned_ip_check_failed", client_ip=client_ip)
            banned = False

        if banned:
            record_banned_request()
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content=create_error_detail(ErrorCode.IP_BANNED, BANNED_MESSAGE, {"title": "Access Denied"}),
            )
        return await call_next(request)

    def _check_and_log(self, request: Request, client_ip: str) -> bool:
        with session_scope(_session_factory(request)) as session:
            ban = find_active_ban(session, client_ip)
            if ban is None:
                return False
            record_security_event(
                session,
                event_type="banned_access",
                severity=SecuritySeverity.CRITICAL,
                message=f"Banned IP {client_ip} attempted to access {request.url.path}",
                ip_address=client_ip,
                user_agent=request.headers.get("user-agent"),
                url=str(request.url),
                method=request.method,
                metadata={"ban_id": str(ban.id), "reason": ban.reason},
            )
            session.commit()
            logger.warning("banned_ip_blocked", client_ip=client_ip, path=request.url.path)
            return True


def install_security_middleware(app: FastAPI, settings: Settings | None = None) -> None:
    """Register ban checks and security headers.

    Call after the application middleware so these wrap it.
    """

    settings = settings or get_settings()
    if settings.banned_ip_check_enabled:
        app.add_middleware(BannedIpMiddleware)
    if settings.security_headers_enabled:
        app.add_middleware(SecurityHeadersMiddleware)


def install_proxy_headers(app: FastAPI, settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    if settings.trusted_proxies:
        app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.trusted_proxies)


__all__ = [
    "BANNED_MESSAGE",
    "BannedIpMiddleware",
    "SecurityHeadersMiddleware",
    "install_proxy_headers",
    "install_security_middleware",
]
