from __future__ import annotations

import mimetypes
from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.engine import Engine
from starlette.background import BackgroundTask

from app.api.response import ResponseEnvelope, action_response, success_response
from app.core.authz import MANAGE_BACKUPS, require_capability
from app.core.config import Settings, get_settings
from app.core.errors import ErrorCode, http_exception
from app.db import session as db_session
from app.logging import get_logger
from app.models.user import User
from app.observability.metrics import record_backup_inventory
from app.schemas.backup import (
    BackupListData,
    BackupOverviewData,
    BackupRead,
    BackupStatsRead,
    CleanupRequest,
    CreateBackupRequest,
    DatabaseStatsRead,
    RestoreRequest,
    SkippedEntryRead,
)
from app.services.backups import (
    BackupNameError,
    BackupNotFound,
    BackupService,
    BackupStore,
    ExportRunner,
    ExternalProcessFailure,
    InvalidBackupRequest,
    RestoreRunner,
    StorageFailure,
    build_backup_store,
    build_export_runner,
    build_restore_runner,
)

logger = get_logger()

router = APIRouter(prefix="/admin/backups", tags=["admin-backups"])

require_backup_admin = require_capability(MANAGE_BACKUPS)


def get_backup_store(settings: Settings = Depends(get_settings)) -> BackupStore:
    return build_backup_store(settings)


def get_export_runner(
    store: BackupStore = Depends(get_backup_store),
    settings: Settings = Depends(get_settings),
) -> ExportRunner:
    return build_export_runner(store, settings)


def get_restore_runner(
    store: BackupStore = Depends(get_backup_store),
    settings: Settings = Depends(get_settings),
) -> RestoreRunner:
    return build_restore_runner(store, settings)


def get_stats_engine() -> Engine:
    return db_session.engine


def get_backup_service(
    store: BackupStore = Depends(get_backup_store),
    export_runner: ExportRunner = Depends(get_export_runner),
    restore_runner: RestoreRunner = Depends(get_restore_runner),
    settings: Settings = Depends(get_settings),
    engine: Engine = Depends(get_stats_engine),
) -> BackupService:
    return BackupService(store, export_runner, restore_runner, settings, engine=engine)


def _not_found(exc: Exception):
    return http_exception(status.HTTP_404_NOT_FOUND, ErrorCode.BACKUP_NOT_FOUND, str(exc))


def _invalid_name(exc: Exception):
    return http_exception(status.HTTP_400_BAD_REQUEST, ErrorCode.BACKUP_INVALID_NAME, str(exc))


def _failure(message: str, output: Any | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=action_response(False, message, output),
    )


def _storage_error(exc: StorageFailure):
    return http_exception(status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.BACKUP_STORAGE_FAILURE, str(exc))


@router.get("", response_model=ResponseEnvelope)
def list_backups(
    service: BackupService = Depends(get_backup_service),
    _: User = Depends(require_backup_admin),
) -> dict:
    try:
        scan = service.scan()
    except StorageFailure as exc:
        raise _storage_error(exc) from exc
    stats = service.catalog.aggregate_stats(scan.backups)
    record_backup_inventory(stats.count, stats.total_size_bytes)
    data = BackupListData(
        backups=[BackupRead.from_backup(item) for item in scan.backups],
        skipped=[SkippedEntryRead.from_entry(item) for item in scan.skipped],
        stats=BackupStatsRead.from_stats(stats),
    )
    return success_response(data.model_dump(mode="json"))


@router.get("/overview", response_model=ResponseEnvelope)
def backup_overview(
    service: BackupService = Depends(get_backup_service),
    _: User = Depends(require_backup_admin),
) -> dict:
    try:
        overview = service.overview()
    except StorageFailure as exc:
        raise _storage_error(exc) from exc
    record_backup_inventory(overview.stats.count, overview.stats.total_size_bytes)
    data = BackupOverviewData(
        stats=BackupStatsRead.from_stats(overview.stats),
        recent=[BackupRead.from_backup(item) for item in overview.recent],
        database_stats=DatabaseStatsRead.from_stats(overview.database) if overview.database is not None else None,
    )
    return success_response(data.model_dump(mode="json"))


@router.post("")
def create_backup(
    payload: CreateBackupRequest,
    service: BackupService = Depends(get_backup_service),
    current_user: User = Depends(require_backup_admin),
):
    logger.info(
        "backup_requested",
        user_id=str(current_user.id),
        category=payload.type.value,
        format=payload.format.value if payload.format else None,
    )
    try:
        outcome = service.create_backup(payload.type.value, payload.format.value if payload.format else None)
    except InvalidBackupRequest as exc:
        raise http_exception(status.HTTP_422_UNPROCESSABLE_ENTITY, ErrorCode.VALIDATION_ERROR, str(exc)) from exc
    except ExternalProcessFailure as exc:
        return _failure(f"Backup failed: {exc}", exc.output)
    except StorageFailure as exc:
        return _failure(f"Backup failed: {exc}")

    if not outcome.success:
        return _failure(outcome.message, outcome.output)
    return action_response(True, outcome.message, outcome.output)


@router.post("/cleanup")
def cleanup_backups(
    payload: CleanupRequest | None = None,
    service: BackupService = Depends(get_backup_service),
    current_user: User = Depends(require_backup_admin),
):
    payload = payload or CleanupRequest()
    try:
        if payload.keep_latest is not None:
            report = service.keep_latest(payload.keep_latest)
        else:
            report = service.cleanup_older_than(payload.older_than_days)
    except StorageFailure as exc:
        return _failure(f"Cleanup failed: {exc}")

    logger.info(
        "backup_cleanup_requested",
        user_id=str(current_user.id),
        deleted=len(report.deleted),
        failed=len(report.failed),
    )
    if report.failed:
        return _failure(
            f"Deleted {len(report.deleted)} backups, {len(report.failed)} could not be deleted",
            report.as_dict(),
        )
    return action_response(True, f"Deleted {len(report.deleted)} old backups", report.as_dict())


@router.get("/{backup_name}/download")
def download_backup_archive(
    backup_name: str,
    service: BackupService = Depends(get_backup_service),
    _: User = Depends(require_backup_admin),
) -> StreamingResponse:
    try:
        archive = service.build_archive(backup_name)
    except BackupNotFound as exc:
        raise _not_found(exc) from exc
    except BackupNameError as exc:
        raise _invalid_name(exc) from exc
    except StorageFailure as exc:
        raise _storage_error(exc) from exc

    return StreamingResponse(
        archive.iter_bytes(),
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{archive.filename}"',
            "Content-Length": str(archive.size_bytes),
        },
        background=BackgroundTask(archive.close),
    )


@router.get("/{backup_name}/{filename}")
def download_backup_file(
    backup_name: str,
    filename: str,
    service: BackupService = Depends(get_backup_service),
    _: User = Depends(require_backup_admin),
) -> StreamingResponse:
    try:
        size, chunks = service.open_file(backup_name, filename)
    except BackupNotFound as exc:
        raise _not_found(exc) from exc
    except BackupNameError as exc:
        raise _not_found(exc) from exc
    except StorageFailure as exc:
        raise _storage_error(exc) from exc

    media_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    return StreamingResponse(
        chunks,
        media_type=media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(size),
        },
    )


@router.delete("/{backup_name}")
def delete_backup(
    backup_name: str,
    service: BackupService = Depends(get_backup_service),
    current_user: User = Depends(require_backup_admin),
):
    try:
        removed = service.delete_backup(backup_name)
    except BackupNameError as exc:
        raise _invalid_name(exc) from exc
    except StorageFailure as exc:
        return _failure(f"Failed to delete backup: {exc}")

    if not removed:
        raise http_exception(status.HTTP_404_NOT_FOUND, ErrorCode.BACKUP_NOT_FOUND, f"Backup not found: {backup_name}")
    logger.info("backup_delete_requested", user_id=str(current_user.id), backup=backup_name)
    return action_response(True, "Backup deleted successfully")


@router.post("/{backup_name}/restore")
def restore_backup(
    backup_name: str,
    payload: RestoreRequest | None = None,
    service: BackupService = Depends(get_backup_service),
    current_user: User = Depends(require_backup_admin),
):
    payload = payload or RestoreRequest()
    logger.info("backup_restore_requested", user_id=str(current_user.id), backup=backup_name, table=payload.table)
    try:
        result = service.restore_backup(backup_name, payload.table)
    except BackupNotFound as exc:
        raise _not_found(exc) from exc
    except BackupNameError as exc:
        raise _invalid_name(exc) from exc
    except InvalidBackupRequest as exc:
        raise http_exception(status.HTTP_422_UNPROCESSABLE_ENTITY, ErrorCode.VALIDATION_ERROR, str(exc)) from exc
    except ExternalProcessFailure as exc:
        return _failure(f"Restore failed: {exc}", exc.output)
    except StorageFailure as exc:
        return _failure(f"Restore failed: {exc}")

    if not result.success:
        return _failure("Restore failed", result.output)
    return action_response(True, "Data restored successfully", result.output)


__all__ = [
    "get_backup_service",
    "get_backup_store",
    "get_export_runner",
    "get_restore_runner",
    "router",
]
