from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from app.models.user import User, UserRole
from app.services.backups import (
    BackupNameError,
    BackupNotFound,
    BackupProducer,
    DatabaseExportRunner,
    DatabaseRestoreRunner,
    ExternalProcessFailure,
    InvalidBackupRequest,
    LocalBackupStore,
    RestoreInvoker,
    RunResult,
)

NOW = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)
NAME = "2024-05-01_10-00-00"


class RecordingRestoreRunner:
    def __init__(self, result: RunResult | None = None, error: Exception | None = None) -> None:
        self.result = result or RunResult(success=True, output="restored", exit_code=0)
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def run(self, target: str, table: str) -> RunResult:
        self.calls.append((target, table))
        if self.error is not None:
            raise self.error
        return self.result


def test_invoker_passes_location_and_selector(backup_store: LocalBackupStore, make_backup) -> None:
    make_backup(NAME)
    runner = RecordingRestoreRunner()

    result = RestoreInvoker(backup_store, runner).restore(NAME, "users")

    assert result.success
    assert runner.calls == [(f"backups/{NAME}", "users")]


def test_invoker_defaults_to_all(backup_store: LocalBackupStore, make_backup) -> None:
    make_backup(NAME)
    runner = RecordingRestoreRunner()
    RestoreInvoker(backup_store, runner).restore(NAME)
    assert runner.calls == [(f"backups/{NAME}", "all")]


def test_invoker_missing_backup(backup_store: LocalBackupStore) -> None:
    runner = RecordingRestoreRunner()
    with pytest.raises(BackupNotFound):
        RestoreInvoker(backup_store, runner).restore(NAME)
    assert runner.calls == []


@pytest.mark.parametrize("table", ["users; drop", "../users", "a b"])
def test_invoker_rejects_unsafe_selectors(backup_store: LocalBackupStore, make_backup, table: str) -> None:
    make_backup(NAME)
    with pytest.raises(InvalidBackupRequest):
        RestoreInvoker(backup_store, RecordingRestoreRunner()).restore(NAME, table)


def test_invoker_rejects_unsafe_names(backup_store: LocalBackupStore) -> None:
    with pytest.raises(BackupNameError):
        RestoreInvoker(backup_store, RecordingRestoreRunner()).restore("../secrets")


def test_invoker_reports_failed_runs(backup_store: LocalBackupStore, make_backup) -> None:
    make_backup(NAME)
    runner = RecordingRestoreRunner(result=RunResult(success=False, output="boom", exit_code=1))
    result = RestoreInvoker(backup_store, runner).restore(NAME)
    assert not result.success
    assert result.output == "boom"


def test_invoker_wraps_runner_crashes(backup_store: LocalBackupStore, make_backup) -> None:
    make_backup(NAME)
    runner = RecordingRestoreRunner(error=RuntimeError("socket closed"))
    with pytest.raises(ExternalProcessFailure, match="socket closed"):
        RestoreInvoker(backup_store, runner).restore(NAME)


def test_database_round_trip_restores_users(
    backup_store: LocalBackupStore, db_engine: Engine, db_session: Session, admin_user: User
) -> None:
    producer = BackupProducer(backup_store, DatabaseExportRunner(db_engine, backup_store))
    assert producer.create_backup("users", "json", now=NOW).success

    admin_user.name = "changed"
    db_session.add(User(name="intruder", email="intruder@example.com", hashed_password="x", role=UserRole.MEMBER))
    db_session.commit()

    result = RestoreInvoker(backup_store, DatabaseRestoreRunner(db_engine, backup_store)).restore(NAME, "users")
    assert result.success, result.output
    assert "users restored: 1 records" in result.output

    db_session.expire_all()
    users = db_session.execute(select(User)).scalars().all()
    assert [(user.email, user.name) for user in users] == [(admin_user.email, "admin")]
    assert users[0].id == admin_user.id


def test_database_restore_all_notes_missing_files(
    backup_store: LocalBackupStore, db_engine: Engine, admin_user: User
) -> None:
    BackupProducer(backup_store, DatabaseExportRunner(db_engine, backup_store)).create_backup("users", now=NOW)

    result = DatabaseRestoreRunner(db_engine, backup_store).run(f"backups/{NAME}", "all")
    assert result.success, result.output
    assert "users restored: 1 records" in result.output


def test_database_restore_empty_file_is_noted(backup_store: LocalBackupStore, db_engine: Engine, make_backup) -> None:
    make_backup(NAME, {"users.json": json.dumps([]).encode()})

    result = DatabaseRestoreRunner(db_engine, backup_store).run(f"backups/{NAME}", "users")
    assert result.success
    assert "No data found in backup for table: users" in result.output


def test_database_restore_without_records_keeps_table(
    backup_store: LocalBackupStore, db_engine: Engine, db_session: Session, admin_user: User, make_backup
) -> None:
    make_backup(NAME, {"users.json": json.dumps([1, "two", None]).encode()})

    result = DatabaseRestoreRunner(db_engine, backup_store).run(f"backups/{NAME}", "users")
    assert result.success, result.output
    assert "No data found in backup for table: users" in result.output
    assert "users restored" not in result.output

    db_session.expire_all()
    assert [user.email for user in db_session.execute(select(User)).scalars()] == [admin_user.email]


def test_database_restore_unknown_table(backup_store: LocalBackupStore, db_engine: Engine, make_backup) -> None:
    make_backup(NAME)
    with pytest.raises(InvalidBackupRequest):
        DatabaseRestoreRunner(db_engine, backup_store).run(f"backups/{NAME}", "passwords")


def test_database_restore_corrupt_file_fails(backup_store: LocalBackupStore, db_engine: Engine, make_backup) -> None:
    make_backup(NAME, {"users.json": b"{broken"})
    result = DatabaseRestoreRunner(db_engine, backup_store).run(f"backups/{NAME}", "users")
    assert not result.success
    assert "Restore failed" in result.output
