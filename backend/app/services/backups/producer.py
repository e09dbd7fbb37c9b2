from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

from app.logging import get_logger
from app.observability.metrics import record_backup_result
from app.services.backups.catalog import format_backup_name
from app.services.backups.errors import ExternalProcessFailure, InvalidBackupRequest
from app.services.backups.store import BackupStore

logger = get_logger()


class BackupCategory(str, Enum):
    ALL = "all"
    USERS = "users"
    COMPANIES = "companies"
    JOBS = "jobs"
    JOB_INTERACTIONS = "job_interactions"
    SECURITY_LOGS = "security_logs"


class BackupFormat(str, Enum):
    JSON = "json"
    CSV = "csv"
    SQL = "sql"


# "jobs" is a composite: each step lands in the same target directory
CATEGORY_STEPS: dict[BackupCategory, tuple[BackupCategory, ...]] = {
    BackupCategory.ALL: (BackupCategory.ALL,),
    BackupCategory.USERS: (BackupCategory.USERS,),
    BackupCategory.COMPANIES: (BackupCategory.COMPANIES,),
    BackupCategory.JOBS: (BackupCategory.COMPANIES, BackupCategory.JOBS, BackupCategory.JOB_INTERACTIONS),
    BackupCategory.JOB_INTERACTIONS: (BackupCategory.JOB_INTERACTIONS,),
    BackupCategory.SECURITY_LOGS: (BackupCategory.SECURITY_LOGS,),
}


@dataclass(frozen=True)
class RunResult:
    success: bool
    output: str = ""
    exit_code: int | None = None


class ExportRunner(Protocol):
    def run(self, category: BackupCategory, fmt: BackupFormat, *, target: str) -> RunResult:
        """Export one category into ``target`` (``<prefix>/<name>``)."""


class RestoreRunner(Protocol):
    def run(self, target: str, table: str) -> RunResult:
        """Restore ``table`` (or ``all``) from the backup located at ``target``."""


@dataclass
class BackupOutcome:
    success: bool
    name: str
    category: BackupCategory
    fmt: BackupFormat
    runs: list[RunResult] = field(default_factory=list)

    @property
    def output(self) -> str:
        return "\n".join(run.output.rstrip() for run in self.runs if run.output).strip()

    @property
    def message(self) -> str:
        if self.success:
            return f"Backup {self.name} created successfully"
        return f"Backup {self.name} failed"


def coerce_category(value: BackupCategory | str) -> BackupCategory:
    try:
        return BackupCategory(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in BackupCategory)
        raise InvalidBackupRequest(f"Unknown backup type {value!r}; expected one of {allowed}") from exc


def coerce_format(value: BackupFormat | str) -> BackupFormat:
    try:
        return BackupFormat(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in BackupFormat)
        raise InvalidBackupRequest(f"Unknown backup format {value!r}; expected one of {allowed}") from exc


class BackupProducer:
    def __init__(self, store: BackupStore, runner: ExportRunner) -> None:
        self.store = store
        self.runner = runner

    def allocate_name(self, now: datetime | None = None) -> str:
        return format_backup_name(now or datetime.now(timezone.utc))

    def create_backup(
        self,
        category: BackupCategory | str,
        fmt: BackupFormat | str = BackupFormat.JSON,
        *,
        now: datetime | None = None,
    ) -> BackupOutcome:
        category = coerce_category(category)
        fmt = coerce_format(fmt)
        name = self.allocate_name(now)
        target = f"{self.store.prefix}/{name}"
        outcome = BackupOutcome(success=True, name=name, category=category, fmt=fmt)

        logger.info("backup_started", backup=name, category=category.value, format=fmt.value)
        start_time = time.perf_counter()
        try:
            for step in CATEGORY_STEPS[category]:
                try:
                    result = self.runner.run(step, fmt, target=target)
                except ExternalProcessFailure:
                    raise
                except Exception as exc:  # noqa: BLE001
                    raise ExternalProcessFailure(
                        f"Export of {step.value} into {name} raised {exc.__class__.__name__}: {exc}"
                    ) from exc
                outcome.runs.append(result)
                if not result.success:
                    outcome.success = False
                    logger.warning(
                        "backup_step_failed",
                        backup=name,
                        step=step.value,
                        exit_code=result.exit_code,
                    )
                    break
        except ExternalProcessFailure:
            record_backup_result(category.value, success=False, duration_seconds=time.perf_counter() - start_time)
            logger.exception("backup_failed", backup=name, category=category.value)
            raise

        duration = time.perf_counter() - start_time
        record_backup_result(category.value, success=outcome.success, duration_seconds=duration)
        if outcome.success:
            logger.info(
                "backup_completed",
                backup=name,
                category=category.value,
                steps=len(outcome.runs),
                duration_seconds=round(duration, 2),
            )
        else:
            logger.warning("backup_failed", backup=name, category=category.value, steps=len(outcome.runs))
        return outcome


__all__ = [
    "BackupCategory",
    "BackupFormat",
    "BackupOutcome",
    "BackupProducer",
    "CATEGORY_STEPS",
    "ExportRunner",
    "RestoreRunner",
    "RunResult",
    "coerce_category",
    "coerce_format",
]
