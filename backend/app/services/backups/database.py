"""In-process export and restore of application tables.

These runners replace the external export/restore executables when the
backup service runs next to the database. Tables are reflected at call time
so the runners work against whatever schema is deployed.
"""

from __future__ import annotations

import csv
import io
import json
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Sequence

from sqlalchemy import Table, delete, func, inspect, insert, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import MetaData

from app.logging import get_logger
from app.services.backups.catalog import SUMMARY_FILENAME, parse_backup_name
from app.services.backups.errors import BackupError, BackupNameError, BackupNotFound, InvalidBackupRequest
from app.services.backups.producer import BackupCategory, BackupFormat, RunResult
from app.services.backups.store import BackupStore

logger = get_logger()

CATEGORY_TABLES: dict[BackupCategory, tuple[str, ...]] = {
    BackupCategory.ALL: (
        "users",
        "cities",
        "countries",
        "neighborhoods",
        "articles",
        "deals",
        "newsletter_subscribers",
        "favorites",
        "coworking_spaces",
        "cost_items",
        "visa_rules",
        "affiliate_links",
        "companies",
        "jobs",
        "job_user_interactions",
        "security_logs",
        "banned_ips",
    ),
    BackupCategory.USERS: ("users",),
    BackupCategory.COMPANIES: ("companies",),
    BackupCategory.JOBS: ("jobs",),
    BackupCategory.JOB_INTERACTIONS: ("job_user_interactions",),
    BackupCategory.SECURITY_LOGS: ("security_logs",),
}

# "all" restores content tables only; logs and bans are restored one table at a time
RESTORE_ALL_TABLES: tuple[str, ...] = (
    "users",
    "cities",
    "articles",
    "deals",
    "newsletter_subscribers",
    "favorites",
    "coworking_spaces",
    "cost_items",
    "visa_rules",
    "affiliate_links",
)
KNOWN_TABLES = frozenset(CATEGORY_TABLES[BackupCategory.ALL])

# tables counted on the admin overview
STATS_TABLES: tuple[str, ...] = RESTORE_ALL_TABLES + ("companies", "jobs", "job_user_interactions")


def backup_name_from_target(store: BackupStore, target: str) -> str:
    namespace = f"{store.prefix}/"
    candidate = (target or "").strip().strip("/")
    if candidate.startswith(namespace):
        candidate = candidate[len(namespace) :]
    if not candidate or "/" in candidate:
        raise BackupNameError(f"Invalid backup target: {target!r}")
    return candidate


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _sql_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (dict, list)):
        value = json.dumps(value, default=_json_default)
    elif not isinstance(value, str):
        value = _json_default(value)
    return "'" + str(value).replace("'", "''") + "'"


def render_rows(table: str, rows: Sequence[dict[str, Any]], fmt: BackupFormat, *, generated_at: datetime) -> bytes:
    if fmt is BackupFormat.JSON:
        return json.dumps(list(rows), indent=4, default=_json_default).encode("utf-8")

    if fmt is BackupFormat.CSV:
        if not rows:
            return b""
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=list(rows[0].keys()), quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writeheader()
        for row in rows:
            writer.writerow({key: "" if value is None else _csv_value(value) for key, value in row.items()})
        return buffer.getvalue().encode("utf-8")

    if not rows:
        return f"-- No data for table {table}\n".encode("utf-8")
    lines = [f"-- Backup for table: {table}", f"-- Generated on: {generated_at.isoformat()}", ""]
    for row in rows:
        columns = ", ".join(row.keys())
        values = ", ".join(_sql_literal(value) for value in row.values())
        lines.append(f"INSERT INTO {table} ({columns}) VALUES ({values});")
    return ("\n".join(lines) + "\n").encode("utf-8")


def _csv_value(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=_json_default)
    if isinstance(value, (datetime, date, uuid.UUID, Decimal)):
        return _json_default(value)
    return value


def _reflect(connection: Connection, names: Iterable[str]) -> dict[str, Table]:
    inspector = inspect(connection)
    metadata = MetaData()
    return {
        name: Table(name, metadata, autoload_with=connection)
        for name in names
        if inspector.has_table(name)
    }


@dataclass(frozen=True)
class DatabaseStats:
    tables: dict[str, int]

    @property
    def total_records(self) -> int:
        return sum(self.tables.values())


def collect_database_stats(engine: Engine, tables: Sequence[str] = STATS_TABLES) -> DatabaseStats:
    """Row counts per table; a missing or unreadable table counts as zero."""

    counts = {name: 0 for name in tables}
    try:
        with engine.connect() as connection:
            reflected = _reflect(connection, tables)
            for name, table in reflected.items():
                try:
                    counts[name] = int(connection.execute(select(func.count()).select_from(table)).scalar_one())
                except SQLAlchemyError as exc:
                    logger.warning("backup_table_count_failed", table=name, reason=str(exc))
    except SQLAlchemyError as exc:
        logger.warning("backup_database_stats_failed", reason=str(exc))
    return DatabaseStats(tables=counts)


class DatabaseExportRunner:
    def __init__(self, engine: Engine, store: BackupStore) -> None:
        self.engine = engine
        self.store = store

    def run(self, category: BackupCategory, fmt: BackupFormat, *, target: str) -> RunResult:
        category = BackupCategory(category)
        fmt = BackupFormat(fmt)
        name = backup_name_from_target(self.store, target)
        wanted = CATEGORY_TABLES[category]
        generated_at = datetime.now(timezone.utc)
        output: list[str] = [f"Backing up {category.value} data as {fmt.value} into {target}"]
        exported: dict[str, int] = {}

        try:
            with self.engine.connect() as connection:
                tables = _reflect(connection, wanted)
                missing = [table for table in wanted if table not in tables]
                if missing and category is not BackupCategory.ALL:
                    output.append(f"Table does not exist: {', '.join(missing)}")
                    return RunResult(success=False, output="\n".join(output), exit_code=1)
                for table_name in missing:
                    logger.warning("backup_table_missing", backup=name, table=table_name)
                    output.append(f"Skipped {table_name}: table does not exist")

                for table_name in wanted:
                    table = tables.get(table_name)
                    if table is None:
                        continue
                    rows = [dict(row) for row in connection.execute(select(table)).mappings()]
                    payload = render_rows(table_name, rows, fmt, generated_at=generated_at)
                    self.store.write_file(name, f"{table_name}.{fmt.value}", payload)
                    exported[table_name] = len(rows)
                    output.append(f"{table_name} backed up: {len(rows)} records")

            self._write_summary(name, category, target, exported, generated_at)
        except (SQLAlchemyError, BackupError) as exc:
            logger.warning("backup_export_failed", backup=name, category=category.value, reason=str(exc))
            output.append(f"Backup failed: {exc}")
            return RunResult(success=False, output="\n".join(output), exit_code=1)

        output.append("Backup completed successfully")
        output.append(f"Backup location: {self.store.location(name)}")
        return RunResult(success=True, output="\n".join(output), exit_code=0)

    def _write_summary(
        self,
        name: str,
        category: BackupCategory,
        target: str,
        exported: dict[str, int],
        generated_at: datetime,
    ) -> None:
        summary: dict[str, Any] = {}
        if self.store.file_exists(name, SUMMARY_FILENAME):
            try:
                existing = json.loads(self.store.read_file(name, SUMMARY_FILENAME).decode("utf-8"))
            except (UnicodeDecodeError, ValueError):
                existing = None
            if isinstance(existing, dict):
                summary = existing

        categories = [item for item in summary.get("categories", []) if isinstance(item, str)]
        if category.value not in categories:
            categories.append(category.value)
        tables = [item for item in summary.get("tables_backed_up", []) if isinstance(item, str)]
        tables.extend(table for table in exported if table not in tables)
        try:
            created_at = parse_backup_name(name).isoformat()
        except BackupNameError:
            created_at = generated_at.isoformat()

        summary.update(
            {
                "backup_date": generated_at.isoformat(),
                "created_at": summary.get("created_at") or created_at,
                "backup_type": ",".join(categories),
                "categories": categories,
                "tables_backed_up": tables,
                "total_records": int(summary.get("total_records") or 0) + sum(exported.values()),
                "backup_location": target,
            }
        )
        self.store.write_file(name, SUMMARY_FILENAME, json.dumps(summary, indent=4).encode("utf-8"))


def _coerce_value(column: Any, value: Any) -> Any:
    if value is None:
        return None
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if isinstance(value, str):
        if python_type is datetime:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return parsed
        if python_type is date:
            return date.fromisoformat(value[:10])
        if python_type is uuid.UUID:
            return uuid.UUID(value)
        if python_type is Decimal:
            return Decimal(value)
    return value


def clean_record(table: Table, record: dict[str, Any]) -> dict[str, Any]:
    """Drop joined display columns and coerce serialized values back to column types."""

    return {key: _coerce_value(table.c[key], value) for key, value in record.items() if key in table.c}


class DatabaseRestoreRunner:
    def __init__(self, engine: Engine, store: BackupStore) -> None:
        self.engine = engine
        self.store = store

    def run(self, target: str, table: str) -> RunResult:
        name = backup_name_from_target(self.store, target)
        selector = (table or "all").strip()
        if not self.store.directory_exists(name):
            raise BackupNotFound(f"Backup directory not found: {target}")
        if selector != "all" and selector not in KNOWN_TABLES:
            raise InvalidBackupRequest(f"Unknown table {selector!r}")

        if selector == "all":
            candidates = [item for item in RESTORE_ALL_TABLES if self.store.file_exists(name, f"{item}.json")]
        else:
            candidates = [selector]

        output: list[str] = [f"Restoring {selector} from {target}"]
        restored: dict[str, int] = {}
        try:
            with self.engine.begin() as connection:
                tables = _reflect(connection, candidates)
                for table_name in candidates:
                    if not self.store.file_exists(name, f"{table_name}.json"):
                        output.append(f"No backup file found for table: {table_name}")
                        continue
                    table_obj = tables.get(table_name)
                    if table_obj is None:
                        raise InvalidBackupRequest(f"Table does not exist: {table_name}")
                    records = json.loads(self.store.read_file(name, f"{table_name}.json").decode("utf-8"))
                    if not isinstance(records, list) or not records:
                        output.append(f"No data found in backup for table: {table_name}")
                        continue
                    rows = [clean_record(table_obj, record) for record in records if isinstance(record, dict)]
                    if not rows:
                        output.append(f"No data found in backup for table: {table_name}")
                        continue
                    connection.execute(delete(table_obj))
                    connection.execute(insert(table_obj), rows)
                    restored[table_name] = len(rows)
                    output.append(f"{table_name} restored: {len(rows)} records")
        except (SQLAlchemyError, ValueError, BackupError) as exc:
            logger.warning("backup_restore_failed", backup=name, table=selector, reason=str(exc))
            output.append(f"Restore failed: {exc}")
            return RunResult(success=False, output="\n".join(output), exit_code=1)

        logger.info("backup_restored", backup=name, table=selector, tables=restored)
        output.append("Restore completed successfully")
        return RunResult(success=True, output="\n".join(output), exit_code=0)


__all__ = [
    "CATEGORY_TABLES",
    "DatabaseExportRunner",
    "DatabaseRestoreRunner",
    "DatabaseStats",
    "KNOWN_TABLES",
    "RESTORE_ALL_TABLES",
    "STATS_TABLES",
    "backup_name_from_target",
    "clean_record",
    "collect_database_stats",
    "render_rows",
]
