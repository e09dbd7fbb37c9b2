"""Prometheus collectors for the admin backend.

Every recorder is a no-op while ``METRICS_ENABLED`` is false, so call sites
never check the flag themselves.
"""
from __future__ import annotations

import time
from typing import Awaitable, Callable

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.config import get_settings

_NAMESPACE = get_settings().metrics_namespace

HTTP_REQUESTS = Counter(
    "http_requests_total",
    "HTTP requests handled, by route template",
    ("method", "route", "status"),
    namespace=_NAMESPACE,
)
HTTP_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency, by route template",
    ("method", "route"),
    namespace=_NAMESPACE,
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 120),
)
BACKUP_RUNS = Counter(
    "backup_runs_total",
    "Backups produced partitioned by category and outcome",
    ("category", "status"),
    namespace=_NAMESPACE,
)
BACKUP_DURATION = Histogram(
    "backup_duration_seconds",
    "Wall-clock duration of backup production",
    ("category",),
    namespace=_NAMESPACE,
    buckets=(0.1, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 300, 600),
)
BACKUPS_PRUNED = Counter(
    "backups_pruned_total",
    "Backup directories removed by cleanup partitioned by outcome",
    ("reason", "status"),
    namespace=_NAMESPACE,
)
BACKUP_INVENTORY = Gauge(
    "backup_inventory",
    "Backups and bytes seen by the most recent catalog listing",
    ("measure",),
    namespace=_NAMESPACE,
)
BANNED_REQUESTS = Counter(
    "banned_ip_requests_total",
    "Requests rejected because the client address is banned",
    namespace=_NAMESPACE,
)


def _enabled() -> bool:
    return get_settings().metrics_enabled


def _label(value: str | None, default: str = "unknown") -> str:
    cleaned = str(value or "").strip().lower().replace(" ", "_")
    return cleaned[:64] or default


def _route_template(request: Request) -> str:
    # the router stores the matched route in the shared scope
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    return template or "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:  # type: ignore[override]
        if not _enabled() or request.url.path == "/metrics":
            return await call_next(request)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            method = request.method.upper()
            route = _route_template(request)
            HTTP_REQUESTS.labels(method=method, route=route, status=str(status_code)).inc()
            HTTP_LATENCY.labels(method=method, route=route).observe(time.perf_counter() - started)


def record_backup_result(category: str, *, success: bool, duration_seconds: float | None) -> None:
    if not _enabled():
        return
    category_label = _label(category)
    BACKUP_RUNS.labels(category=category_label, status="success" if success else "failure").inc()
    if duration_seconds is not None:
        BACKUP_DURATION.labels(category=category_label).observe(max(duration_seconds, 0.0))


def record_backup_pruned(reason: str, *, success: bool) -> None:
    if not _enabled():
        return
    BACKUPS_PRUNED.labels(reason=_label(reason), status="success" if success else "failure").inc()


def record_backup_inventory(count: int, total_size_bytes: int) -> None:
    if not _enabled():
        return
    BACKUP_INVENTORY.labels(measure="count").set(count)
    BACKUP_INVENTORY.labels(measure="bytes").set(total_size_bytes)


def record_banned_request() -> None:
    if _enabled():
        BANNED_REQUESTS.inc()


def metrics_response() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "BACKUP_INVENTORY",
    "BACKUP_RUNS",
    "BACKUPS_PRUNED",
    "BANNED_REQUESTS",
    "HTTP_LATENCY",
    "HTTP_REQUESTS",
    "MetricsMiddleware",
    "metrics_response",
    "record_backup_inventory",
    "record_backup_pruned",
    "record_backup_result",
    "record_banned_request",
]
