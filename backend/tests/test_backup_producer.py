from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timezone
from typing import Generator

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table, insert
from sqlalchemy.engine import Engine

from app.models.user import User
from app.services.backups import (
    BackupCatalog,
    BackupCategory,
    BackupFormat,
    BackupProducer,
    DatabaseExportRunner,
    ExternalProcessFailure,
    InvalidBackupRequest,
    LocalBackupStore,
    RunResult,
)

NOW = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)
NAME = "2024-05-01_10-00-00"


class RecordingRunner:
    def __init__(self, fail_on: BackupCategory | None = None) -> None:
        self.fail_on = fail_on
        self.calls: list[tuple[BackupCategory, BackupFormat, str]] = []

    def run(self, category: BackupCategory, fmt: BackupFormat, *, target: str) -> RunResult:
        self.calls.append((category, fmt, target))
        if category is self.fail_on:
            return RunResult(success=False, output=f"{category.value} exploded", exit_code=2)
        return RunResult(success=True, output=f"{category.value} done", exit_code=0)


class CrashingRunner:
    def run(self, category: BackupCategory, fmt: BackupFormat, *, target: str) -> RunResult:
        raise RuntimeError("connection reset")


@pytest.fixture()
def job_tables(db_engine: Engine) -> Generator[MetaData, None, None]:
    metadata = MetaData()
    Table("companies", metadata, Column("id", Integer, primary_key=True), Column("name", String(100)))
    Table("jobs", metadata, Column("id", Integer, primary_key=True), Column("title", String(100)), Column("company_id", Integer))
    Table("job_user_interactions", metadata, Column("id", Integer, primary_key=True), Column("job_id", Integer))
    metadata.create_all(db_engine)
    with db_engine.begin() as connection:
        connection.execute(insert(metadata.tables["companies"]), [{"id": 1, "name": "Remote Co"}])
        connection.execute(insert(metadata.tables["jobs"]), [{"id": 1, "title": "Engineer", "company_id": 1}])
    yield metadata
    metadata.drop_all(db_engine)


def test_backup_name_is_the_start_timestamp(backup_store: LocalBackupStore) -> None:
    runner = RecordingRunner()
    outcome = BackupProducer(backup_store, runner).create_backup("users", "csv", now=NOW)

    assert outcome.success
    assert outcome.name == NAME
    assert runner.calls == [(BackupCategory.USERS, BackupFormat.CSV, f"backups/{NAME}")]
    assert outcome.message == f"Backup {NAME} created successfully"


def test_jobs_runs_three_steps_into_one_target(backup_store: LocalBackupStore) -> None:
    runner = RecordingRunner()
    outcome = BackupProducer(backup_store, runner).create_backup(BackupCategory.JOBS, now=NOW)

    assert [call[0] for call in runner.calls] == [
        BackupCategory.COMPANIES,
        BackupCategory.JOBS,
        BackupCategory.JOB_INTERACTIONS,
    ]
    assert {call[2] for call in runner.calls} == {f"backups/{NAME}"}
    assert outcome.output == "companies done\njobs done\njob_interactions done"


def test_jobs_stops_at_first_failing_step(backup_store: LocalBackupStore) -> None:
    runner = RecordingRunner(fail_on=BackupCategory.JOBS)
    outcome = BackupProducer(backup_store, runner).create_backup("jobs", now=NOW)

    assert not outcome.success
    assert len(runner.calls) == 2
    assert outcome.runs[-1].exit_code == 2
    assert outcome.message == f"Backup {NAME} failed"


def test_runner_crash_becomes_external_process_failure(backup_store: LocalBackupStore) -> None:
    with pytest.raises(ExternalProcessFailure, match="connection reset"):
        BackupProducer(backup_store, CrashingRunner()).create_backup("users", now=NOW)


@pytest.mark.parametrize(("category", "fmt"), [("everything", "json"), ("users", "xml")])
def test_unknown_category_or_format_rejected(backup_store: LocalBackupStore, category: str, fmt: str) -> None:
    runner = RecordingRunner()
    with pytest.raises(InvalidBackupRequest):
        BackupProducer(backup_store, runner).create_backup(category, fmt, now=NOW)
    assert runner.calls == []


def test_database_export_writes_table_and_summary(
    backup_store: LocalBackupStore, db_engine: Engine, admin_user: User
) -> None:
    producer = BackupProducer(backup_store, DatabaseExportRunner(db_engine, backup_store))
    outcome = producer.create_backup("users", "json", now=NOW)

    assert outcome.success, outcome.output
    rows = json.loads(backup_store.read_file(NAME, "users.json"))
    assert [row["email"] for row in rows] == [admin_user.email]

    summary = json.loads(backup_store.read_file(NAME, "backup_summary.json"))
    assert summary["backup_type"] == "users"
    assert summary["tables_backed_up"] == ["users"]
    assert summary["total_records"] == 1
    assert summary["backup_location"] == f"backups/{NAME}"
    assert summary["created_at"] == NOW.isoformat()


def test_database_export_is_listed_by_catalog(
    backup_store: LocalBackupStore, db_engine: Engine, admin_user: User
) -> None:
    producer = BackupProducer(backup_store, DatabaseExportRunner(db_engine, backup_store))
    assert producer.create_backup("users", "json", now=NOW).success

    backups = BackupCatalog(backup_store).list_backups()
    assert [backup.name for backup in backups] == [NAME]

    listed = backups[0]
    assert listed.file_count >= 1
    files = backup_store.list_files(NAME)
    assert "users.json" in files
    assert listed.total_size_bytes == sum(backup_store.file_size(NAME, path) for path in files)


def test_database_export_csv_quotes_every_field(
    backup_store: LocalBackupStore, db_engine: Engine, admin_user: User
) -> None:
    outcome = BackupProducer(backup_store, DatabaseExportRunner(db_engine, backup_store)).create_backup(
        "users", "csv", now=NOW
    )
    assert outcome.success
    text = backup_store.read_file(NAME, "users.csv").decode()
    assert text.splitlines()[1].startswith('"')
    rows = list(csv.DictReader(io.StringIO(text)))
    assert rows[0]["email"] == admin_user.email


def test_database_export_sql_for_empty_table(backup_store: LocalBackupStore, db_engine: Engine) -> None:
    outcome = BackupProducer(backup_store, DatabaseExportRunner(db_engine, backup_store)).create_backup(
        "users", "sql", now=NOW
    )
    assert outcome.success
    assert backup_store.read_file(NAME, "users.sql") == b"-- No data for table users\n"


def test_database_export_missing_table_fails_single_category(
    backup_store: LocalBackupStore, db_engine: Engine
) -> None:
    outcome = BackupProducer(backup_store, DatabaseExportRunner(db_engine, backup_store)).create_backup(
        "companies", now=NOW
    )
    assert not outcome.success
    assert "Table does not exist: companies" in outcome.output


def test_database_export_jobs_composite(
    backup_store: LocalBackupStore, db_engine: Engine, job_tables: MetaData
) -> None:
    outcome = BackupProducer(backup_store, DatabaseExportRunner(db_engine, backup_store)).create_backup(
        "jobs", now=NOW
    )

    assert outcome.success, outcome.output
    assert backup_store.list_files(NAME) == [
        "backup_summary.json",
        "companies.json",
        "job_user_interactions.json",
        "jobs.json",
    ]
    summary = json.loads(backup_store.read_file(NAME, "backup_summary.json"))
    assert summary["categories"] == ["companies", "jobs", "job_interactions"]
    assert summary["total_records"] == 2


def test_database_export_all_skips_missing_tables(
    backup_store: LocalBackupStore, db_engine: Engine, admin_user: User
) -> None:
    outcome = BackupProducer(backup_store, DatabaseExportRunner(db_engine, backup_store)).create_backup(
        "all", now=NOW
    )

    assert outcome.success, outcome.output
    files = backup_store.list_files(NAME)
    assert {"users.json", "security_logs.json", "banned_ips.json"} <= set(files)
    assert "cities.json" not in files
    assert "Skipped cities: table does not exist" in outcome.output
