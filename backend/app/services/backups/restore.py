from __future__ import annotations

from app.logging import get_logger
from app.services.backups.errors import BackupNotFound, ExternalProcessFailure, InvalidBackupRequest
from app.services.backups.producer import RestoreRunner, RunResult
from app.services.backups.store import BackupStore, validate_backup_name

logger = get_logger()


class RestoreInvoker:
    """Hands a backup location and table selector to the restore collaborator."""

    def __init__(self, store: BackupStore, runner: RestoreRunner) -> None:
        self.store = store
        self.runner = runner

    def restore(self, name: str, table: str = "all") -> RunResult:
        name = validate_backup_name(name)
        selector = (table or "all").strip()
        if not selector or any(char in selector for char in "/\\ ;"):
            raise InvalidBackupRequest(f"Invalid table selector: {table!r}")
        if not self.store.directory_exists(name):
            raise BackupNotFound(f"Backup not found: {name}")

        target = f"{self.store.prefix}/{name}"
        logger.info("backup_restore_started", backup=name, table=selector)
        try:
            result = self.runner.run(target, selector)
        except (BackupNotFound, InvalidBackupRequest, ExternalProcessFailure):
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("backup_restore_crashed", backup=name, table=selector)
            raise ExternalProcessFailure(f"Restore of {name} raised {exc.__class__.__name__}: {exc}") from exc

        if result.success:
            logger.info("backup_restore_completed", backup=name, table=selector)
        else:
            logger.warning("backup_restore_failed", backup=name, table=selector, exit_code=result.exit_code)
        return result


__all__ = ["RestoreInvoker"]
