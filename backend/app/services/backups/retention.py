from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from app.logging import get_logger
from app.observability.metrics import record_backup_pruned
from app.services.backups.catalog import Backup, BackupCatalog
from app.services.backups.errors import BackupError
from app.services.backups.store import BackupStore

logger = get_logger()


@dataclass
class SweepReport:
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    kept: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed

    def as_dict(self) -> dict[str, object]:
        return {
            "deleted": list(self.deleted),
            "failed": dict(self.failed),
            "kept": list(self.kept),
            "skipped": list(self.skipped),
        }


class RetentionSweeper:
    def __init__(self, store: BackupStore, catalog: BackupCatalog | None = None) -> None:
        self.store = store
        self.catalog = catalog or BackupCatalog(store)

    def cleanup_older_than(self, cutoff_days: int = 30, *, now: datetime | None = None) -> SweepReport:
        if cutoff_days < 0:
            raise ValueError("cutoff_days must be zero or positive")
        reference = now or datetime.now(timezone.utc)
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=timezone.utc)
        cutoff = reference - timedelta(days=cutoff_days)

        scan = self.catalog.scan()
        report = SweepReport(skipped=[entry.name for entry in scan.skipped])
        expired: list[Backup] = []
        for backup in scan.backups:
            if backup.created_at < cutoff:
                expired.append(backup)
            else:
                report.kept.append(backup.name)

        self._delete_all(expired, report, reason="age")
        logger.info(
            "backup_retention_swept",
            cutoff=cutoff.isoformat(),
            deleted=len(report.deleted),
            failed=len(report.failed),
            kept=len(report.kept),
        )
        return report

    def keep_latest(self, count: int = 5) -> SweepReport:
        if count < 0:
            raise ValueError("count must be zero or positive")
        scan = self.catalog.scan()
        report = SweepReport(
            kept=[backup.name for backup in scan.backups[:count]],
            skipped=[entry.name for entry in scan.skipped],
        )
        self._delete_all(scan.backups[count:], report, reason="keep_latest")
        logger.info("backup_keep_latest_swept", keep=count, deleted=len(report.deleted), failed=len(report.failed))
        return report

    def _delete_all(self, backups: list[Backup], report: SweepReport, *, reason: str) -> None:
        for backup in backups:
            try:
                removed = self.store.delete_directory(backup.name)
            except BackupError as exc:
                report.failed[backup.name] = str(exc)
                record_backup_pruned(reason, success=False)
                logger.warning("backup_prune_failed", backup=backup.name, reason=str(exc))
                continue
            if removed:
                report.deleted.append(backup.name)
                record_backup_pruned(reason, success=True)
                logger.info("backup_pruned", backup=backup.name, retention=reason)
            else:
                report.failed[backup.name] = "Backup disappeared before it could be deleted"
                record_backup_pruned(reason, success=False)


__all__ = ["RetentionSweeper", "SweepReport"]
