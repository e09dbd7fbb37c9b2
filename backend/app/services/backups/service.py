from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy.engine import Engine

from app.core.config import Settings, get_settings
from app.logging import get_logger
from app.services.backups.archiver import BackupArchiver, StagedArchive
from app.services.backups.catalog import Backup, BackupCatalog, BackupStats, CatalogScan
from app.services.backups.database import DatabaseStats, collect_database_stats
from app.services.backups.producer import BackupFormat, BackupOutcome, BackupProducer, ExportRunner, RestoreRunner, RunResult
from app.services.backups.restore import RestoreInvoker
from app.services.backups.retention import RetentionSweeper, SweepReport
from app.services.backups.store import BackupStore, validate_backup_name, validate_relative_path

logger = get_logger()


@dataclass(frozen=True)
class BackupOverview:
    stats: BackupStats
    recent: list[Backup]
    database: DatabaseStats | None = None


class BackupService:
    """Single entry point for the admin routes and the operator CLI."""

    def __init__(
        self,
        store: BackupStore,
        export_runner: ExportRunner,
        restore_runner: RestoreRunner,
        settings: Optional[Settings] = None,
        *,
        engine: Engine | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.engine = engine
        self.store = store
        self.catalog = BackupCatalog(store)
        self.producer = BackupProducer(store, export_runner)
        self.restorer = RestoreInvoker(store, restore_runner)
        self.sweeper = RetentionSweeper(store, self.catalog)
        self.archiver = BackupArchiver(
            store,
            staging_dir=self.settings.backup_staging_dir,
            chunk_size=self.settings.backup_archive_chunk_bytes,
        )

    def scan(self) -> CatalogScan:
        return self.catalog.scan()

    def list_backups(self) -> list[Backup]:
        return self.catalog.list_backups()

    def get_backup(self, name: str) -> Backup:
        return self.catalog.get_backup(name)

    def overview(self, limit: int | None = None) -> BackupOverview:
        backups = self.catalog.list_backups()
        stats = self.catalog.aggregate_stats(backups)
        recent_limit = self.settings.backup_recent_limit if limit is None else max(limit, 0)
        database = collect_database_stats(self.engine) if self.engine is not None else None
        return BackupOverview(stats=stats, recent=backups[:recent_limit], database=database)

    def create_backup(self, category: str, fmt: str | None = None, *, now: datetime | None = None) -> BackupOutcome:
        return self.producer.create_backup(category, fmt or BackupFormat(self.settings.backup_default_format), now=now)

    def restore_backup(self, name: str, table: str = "all") -> RunResult:
        return self.restorer.restore(name, table)

    def delete_backup(self, name: str) -> bool:
        name = validate_backup_name(name)
        removed = self.store.delete_directory(name)
        if removed:
            logger.info("backup_deleted", backup=name)
        else:
            logger.info("backup_delete_missing", backup=name)
        return removed

    def cleanup_older_than(self, cutoff_days: int | None = None, *, now: datetime | None = None) -> SweepReport:
        days = self.settings.backup_retention_days if cutoff_days is None else cutoff_days
        return self.sweeper.cleanup_older_than(days, now=now)

    def keep_latest(self, count: int | None = None) -> SweepReport:
        return self.sweeper.keep_latest(self.settings.backup_keep_latest if count is None else count)

    def build_archive(self, name: str) -> StagedArchive:
        return self.archiver.build(name)

    def open_file(self, name: str, path: str) -> tuple[int, Iterator[bytes]]:
        name = validate_backup_name(name)
        path = validate_relative_path(path)
        size = self.store.file_size(name, path)
        return size, self.store.iter_file(name, path, self.settings.backup_archive_chunk_bytes)


__all__ = ["BackupOverview", "BackupService"]
