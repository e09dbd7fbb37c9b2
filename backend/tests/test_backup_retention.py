from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from app.services.backups import LocalBackupStore, RetentionSweeper, StorageFailure
from app.services.backups.catalog import format_backup_name

NOW = datetime(2024, 6, 30, 12, 0, 0, tzinfo=timezone.utc)


def _aged(days: int) -> str:
    return format_backup_name(NOW - timedelta(days=days))


class FlakyStore(LocalBackupStore):
    def __init__(self, base_dir: Path, broken: set[str]) -> None:
        super().__init__(base_dir)
        self.broken = broken

    def delete_directory(self, name: str) -> bool:
        if name in self.broken:
            raise StorageFailure(f"permission denied: {name}")
        return super().delete_directory(name)


def test_cleanup_deletes_only_entries_older_than_cutoff(backup_store: LocalBackupStore, make_backup) -> None:
    recent, month, older = _aged(10), _aged(31), _aged(45)
    for name in (recent, month, older):
        make_backup(name)

    report = RetentionSweeper(backup_store).cleanup_older_than(30, now=NOW)

    assert sorted(report.deleted) == sorted([month, older])
    assert report.kept == [recent]
    assert report.success
    assert backup_store.list_backup_directories() == [recent]


def test_cleanup_boundary_is_exclusive(backup_store: LocalBackupStore, make_backup) -> None:
    exactly = _aged(30)
    make_backup(exactly)

    report = RetentionSweeper(backup_store).cleanup_older_than(30, now=NOW)
    assert report.deleted == []
    assert report.kept == [exactly]


def test_cleanup_reports_malformed_entries_as_skipped(backup_store: LocalBackupStore, make_backup) -> None:
    make_backup("scratch")
    make_backup(_aged(90))

    report = RetentionSweeper(backup_store).cleanup_older_than(30, now=NOW)
    assert report.skipped == ["scratch"]
    assert backup_store.directory_exists("scratch")


def test_cleanup_continues_after_a_failed_deletion(tmp_path: Path) -> None:
    broken = _aged(40)
    store = FlakyStore(tmp_path, broken={broken})
    for name in (_aged(35), broken, _aged(50)):
        store.write_file(name, "users.json", b"[]")

    report = RetentionSweeper(store).cleanup_older_than(30, now=NOW)

    assert sorted(report.deleted) == sorted([_aged(35), _aged(50)])
    assert list(report.failed) == [broken]
    assert "permission denied" in report.failed[broken]
    assert not report.success
    assert store.list_backup_directories() == [broken]


def test_keep_latest(backup_store: LocalBackupStore, make_backup) -> None:
    names = [_aged(days) for days in range(1, 8)]
    for name in names:
        make_backup(name)

    report = RetentionSweeper(backup_store).keep_latest(3)

    assert report.kept == names[:3]
    assert sorted(report.deleted) == sorted(names[3:])
    assert sorted(backup_store.list_backup_directories()) == sorted(names[:3])


def test_negative_arguments_rejected(backup_store: LocalBackupStore) -> None:
    sweeper = RetentionSweeper(backup_store)
    with pytest.raises(ValueError):
        sweeper.cleanup_older_than(-1)
    with pytest.raises(ValueError):
        sweeper.keep_latest(-1)


def test_report_as_dict(backup_store: LocalBackupStore, make_backup) -> None:
    make_backup(_aged(60))
    report = RetentionSweeper(backup_store).cleanup_older_than(30, now=NOW)
    assert report.as_dict() == {"deleted": [_aged(60)], "failed": {}, "kept": [], "skipped": []}
