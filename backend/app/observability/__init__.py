from app.observability.metrics import (
    MetricsMiddleware,
    metrics_response,
    record_backup_inventory,
    record_backup_pruned,
    record_backup_result,
    record_banned_request,
)

__all__ = [
    "MetricsMiddleware",
    "metrics_response",
    "record_backup_inventory",
    "record_backup_pruned",
    "record_backup_result",
    "record_banned_request",
]
