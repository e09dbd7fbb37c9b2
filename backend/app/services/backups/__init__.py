from __future__ import annotations

from typing import Optional

from sqlalchemy.engine import Engine

from app.core.config import Settings, get_settings
from app.services.backups.archiver import BackupArchiver, StagedArchive
from app.services.backups.catalog import Backup, BackupCatalog, BackupStats, CatalogScan, parse_backup_name
from app.services.backups.commands import CommandExportRunner, CommandRestoreRunner
from app.services.backups.database import DatabaseExportRunner, DatabaseRestoreRunner, DatabaseStats, collect_database_stats
from app.services.backups.errors import (
    BackupError,
    BackupNameError,
    BackupNotFound,
    ExternalProcessFailure,
    InvalidBackupRequest,
    StorageFailure,
)
from app.services.backups.formatting import format_bytes
from app.services.backups.producer import (
    BackupCategory,
    BackupFormat,
    BackupOutcome,
    BackupProducer,
    ExportRunner,
    RestoreRunner,
    RunResult,
)
from app.services.backups.restore import RestoreInvoker
from app.services.backups.retention import RetentionSweeper, SweepReport
from app.services.backups.service import BackupOverview, BackupService
from app.services.backups.store import BackupStore, LocalBackupStore


def build_backup_store(settings: Optional[Settings] = None) -> BackupStore:
    settings = settings or get_settings()
    if settings.backup_storage == "s3":
        from app.services.backups.s3_store import S3BackupStore

        return S3BackupStore.from_settings(settings)
    return LocalBackupStore(settings.backup_base_dir, prefix=settings.backup_prefix)


def _default_engine() -> Engine:
    from app.db.session import engine

    return engine


def build_export_runner(
    store: BackupStore,
    settings: Optional[Settings] = None,
    *,
    engine: Engine | None = None,
) -> ExportRunner:
    settings = settings or get_settings()
    if settings.backup_export_runner == "command":
        return CommandExportRunner(settings.backup_export_command, timeout=settings.backup_command_timeout_seconds)
    return DatabaseExportRunner(engine or _default_engine(), store)


def build_restore_runner(
    store: BackupStore,
    settings: Optional[Settings] = None,
    *,
    engine: Engine | None = None,
) -> RestoreRunner:
    settings = settings or get_settings()
    if settings.backup_export_runner == "command":
        return CommandRestoreRunner(settings.backup_restore_command, timeout=settings.backup_command_timeout_seconds)
    return DatabaseRestoreRunner(engine or _default_engine(), store)


def build_backup_service(settings: Optional[Settings] = None, *, engine: Engine | None = None) -> BackupService:
    settings = settings or get_settings()
    store = build_backup_store(settings)
    return BackupService(
        store,
        build_export_runner(store, settings, engine=engine),
        build_restore_runner(store, settings, engine=engine),
        settings,
        engine=engine or _default_engine(),
    )


__all__ = [
    "Backup",
    "BackupArchiver",
    "BackupCatalog",
    "BackupCategory",
    "BackupError",
    "BackupFormat",
    "BackupNameError",
    "BackupNotFound",
    "BackupOutcome",
    "BackupOverview",
    "BackupProducer",
    "BackupService",
    "BackupStats",
    "BackupStore",
    "CatalogScan",
    "CommandExportRunner",
    "CommandRestoreRunner",
    "DatabaseExportRunner",
    "DatabaseRestoreRunner",
    "DatabaseStats",
    "ExportRunner",
    "ExternalProcessFailure",
    "InvalidBackupRequest",
    "LocalBackupStore",
    "RestoreInvoker",
    "RestoreRunner",
    "RetentionSweeper",
    "RunResult",
    "StagedArchive",
    "StorageFailure",
    "SweepReport",
    "build_backup_service",
    "build_backup_store",
    "build_export_runner",
    "build_restore_runner",
    "collect_database_stats",
    "format_bytes",
    "parse_backup_name",
]
