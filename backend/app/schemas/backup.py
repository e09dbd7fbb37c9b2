from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from app.services.backups.catalog import Backup, BackupStats, SkippedEntry
from app.services.backups.database import DatabaseStats
from app.services.backups.formatting import format_backup_date
from app.services.backups.producer import BackupCategory, BackupFormat


class BackupFileRead(BaseModel):
    path: str
    size_bytes: int
    size_human: str


class BackupRead(BaseModel):
    name: str
    created_at: datetime
    created_at_display: str
    file_count: int
    total_size_bytes: int
    size_human: str
    files: list[BackupFileRead]
    summary: dict[str, Any] | None = None

    @classmethod
    def from_backup(cls, backup: Backup) -> "BackupRead":
        return cls(
            name=backup.name,
            created_at=backup.created_at,
            created_at_display=format_backup_date(backup.created_at),
            file_count=backup.file_count,
            total_size_bytes=backup.total_size_bytes,
            size_human=backup.size_human,
            files=[BackupFileRead(path=item.path, size_bytes=item.size_bytes, size_human=item.size_human) for item in backup.files],
            summary=backup.summary,
        )


class BackupStatsRead(BaseModel):
    count: int
    total_size_bytes: int
    total_size_human: str
    oldest_name: str | None
    newest_name: str | None

    @classmethod
    def from_stats(cls, stats: BackupStats) -> "BackupStatsRead":
        return cls(
            count=stats.count,
            total_size_bytes=stats.total_size_bytes,
            total_size_human=stats.total_size_human,
            oldest_name=stats.oldest_name,
            newest_name=stats.newest_name,
        )


class SkippedEntryRead(BaseModel):
    name: str
    reason: str

    @classmethod
    def from_entry(cls, entry: SkippedEntry) -> "SkippedEntryRead":
        return cls(name=entry.name, reason=entry.reason)


class BackupListData(BaseModel):
    backups: list[BackupRead]
    skipped: list[SkippedEntryRead]
    stats: BackupStatsRead


class DatabaseStatsRead(BaseModel):
    tables: dict[str, int]
    total_records: int

    @classmethod
    def from_stats(cls, stats: DatabaseStats) -> "DatabaseStatsRead":
        return cls(tables=dict(stats.tables), total_records=stats.total_records)


class BackupOverviewData(BaseModel):
    stats: BackupStatsRead
    recent: list[BackupRead]
    database_stats: DatabaseStatsRead | None = None


class CreateBackupRequest(BaseModel):
    type: BackupCategory = BackupCategory.ALL
    format: BackupFormat | None = None


class CleanupRequest(BaseModel):
    older_than_days: int | None = Field(default=None, ge=0)
    keep_latest: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def ensure_single_strategy(self) -> "CleanupRequest":
        if self.older_than_days is not None and self.keep_latest is not None:
            raise ValueError("Specify either older_than_days or keep_latest, not both")
        return self


class RestoreRequest(BaseModel):
    table: str = Field(default="all", min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_]+$")


__all__ = [
    "BackupFileRead",
    "BackupListData",
    "BackupOverviewData",
    "BackupRead",
    "BackupStatsRead",
    "CleanupRequest",
    "CreateBackupRequest",
    "RestoreRequest",
    "SkippedEntryRead",
]
