from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from app.logging import get_logger
from app.services.backups.errors import BackupError, BackupNameError, BackupNotFound
from app.services.backups.formatting import format_bytes
from app.services.backups.store import BackupStore

logger = get_logger()

BACKUP_NAME_FORMAT = "%Y-%m-%d_%H-%M-%S"
SUMMARY_FILENAME = "backup_summary.json"


def parse_backup_name(name: str) -> datetime:
    # strptime accepts unpadded fields, the round trip keeps the fixed width contract
    try:
        parsed = datetime.strptime(name, BACKUP_NAME_FORMAT)
    except (TypeError, ValueError) as exc:
        raise BackupNameError(f"Backup name {name!r} is not a {BACKUP_NAME_FORMAT} timestamp") from exc
    if parsed.strftime(BACKUP_NAME_FORMAT) != name:
        raise BackupNameError(f"Backup name {name!r} is not a {BACKUP_NAME_FORMAT} timestamp")
    return parsed.replace(tzinfo=timezone.utc)


def format_backup_name(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(BACKUP_NAME_FORMAT)


def _summary_timestamp(summary: dict[str, Any] | None) -> datetime | None:
    if not summary:
        return None
    for key in ("created_at", "backup_date"):
        value = summary.get(key)
        if not isinstance(value, str) or not value.strip():
            continue
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            continue
        return parsed.replace(tzinfo=timezone.utc) if parsed.tzinfo is None else parsed.astimezone(timezone.utc)
    return None


@dataclass(frozen=True)
class BackupFile:
    path: str
    size_bytes: int

    @property
    def size_human(self) -> str:
        return format_bytes(self.size_bytes)


@dataclass(frozen=True)
class Backup:
    """One directory of the backup namespace, as seen at enumeration time."""

    name: str
    created_at: datetime
    files: tuple[BackupFile, ...]
    summary: dict[str, Any] | None = None
    name_is_timestamp: bool = True

    @property
    def total_size_bytes(self) -> int:
        return sum(item.size_bytes for item in self.files)

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def size_human(self) -> str:
        return format_bytes(self.total_size_bytes)

    @property
    def sort_key(self) -> str:
        if self.name_is_timestamp:
            return self.name
        return format_backup_name(self.created_at)


@dataclass(frozen=True)
class SkippedEntry:
    name: str
    reason: str


@dataclass(frozen=True)
class CatalogScan:
    backups: list[Backup] = field(default_factory=list)
    skipped: list[SkippedEntry] = field(default_factory=list)


@dataclass(frozen=True)
class BackupStats:
    count: int
    total_size_bytes: int
    oldest_name: str | None
    newest_name: str | None

    @property
    def total_size_human(self) -> str:
        return format_bytes(self.total_size_bytes)


class BackupCatalog:
    def __init__(self, store: BackupStore) -> None:
        self.store = store

    def scan(self) -> CatalogScan:
        backups: list[Backup] = []
        skipped: list[SkippedEntry] = []
        for name in self.store.list_backup_directories():
            try:
                backups.append(self.load(name))
            except BackupError as exc:
                logger.warning("backup_directory_skipped", backup=name, reason=str(exc))
                skipped.append(SkippedEntry(name=name, reason=str(exc)))
        backups.sort(key=lambda item: item.sort_key, reverse=True)
        return CatalogScan(backups=backups, skipped=skipped)

    def list_backups(self) -> list[Backup]:
        return self.scan().backups

    def recent_backups(self, limit: int = 5) -> list[Backup]:
        if limit <= 0:
            return []
        return self.list_backups()[:limit]

    def get_backup(self, name: str) -> Backup:
        if not self.store.directory_exists(name):
            raise BackupNotFound(f"Backup not found: {name}")
        return self.load(name)

    def aggregate_stats(self, backups: list[Backup] | None = None) -> BackupStats:
        entries = self.list_backups() if backups is None else backups
        count = 0
        total = 0
        oldest: Backup | None = None
        newest: Backup | None = None
        for backup in entries:
            count += 1
            total += backup.total_size_bytes
            if oldest is None or backup.sort_key < oldest.sort_key:
                oldest = backup
            if newest is None or backup.sort_key > newest.sort_key:
                newest = backup
        return BackupStats(
            count=count,
            total_size_bytes=total,
            oldest_name=oldest.name if oldest else None,
            newest_name=newest.name if newest else None,
        )

    def load(self, name: str) -> Backup:
        paths = self.store.list_files(name)
        files = tuple(BackupFile(path=path, size_bytes=self.store.file_size(name, path)) for path in paths)
        summary = self._read_summary(name, paths)
        stored = _summary_timestamp(summary)
        try:
            parsed = parse_backup_name(name)
        except BackupNameError:
            if stored is None:
                raise
            return Backup(name=name, created_at=stored, files=files, summary=summary, name_is_timestamp=False)
        return Backup(name=name, created_at=stored or parsed, files=files, summary=summary)

    def _read_summary(self, name: str, paths: list[str]) -> dict[str, Any] | None:
        if SUMMARY_FILENAME not in paths:
            return None
        raw = self.store.read_file(name, SUMMARY_FILENAME)
        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            logger.warning("backup_summary_unreadable", backup=name)
            return None
        if not isinstance(document, dict):
            logger.warning("backup_summary_unreadable", backup=name)
            return None
        return document


__all__ = [
    "BACKUP_NAME_FORMAT",
    "Backup",
    "BackupCatalog",
    "BackupFile",
    "BackupStats",
    "CatalogScan",
    "SUMMARY_FILENAME",
    "SkippedEntry",
    "format_backup_name",
    "parse_backup_name",
]
