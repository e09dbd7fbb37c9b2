import time
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.responses import Response

from app.api.response import ResponseEnvelope, success_response
from app.core.config import Settings, get_settings
from app.db.session import get_db
from app.observability.metrics import metrics_response
from app.services.backups import BackupError, build_backup_store

router = APIRouter(tags=["system"])


@router.get("/healthz", summary="Liveness probe", response_model=ResponseEnvelope)
def healthz() -> dict:
    return success_response({"status": "ok"})


@router.get("/readyz", summary="Readiness probe", response_model=ResponseEnvelope)
def readyz(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)) -> JSONResponse:
    checks: dict[str, dict[str, Any]] = {}
    overall_ok = True

    db_check: dict[str, Any] = {"status": "ok"}
    db_start = time.perf_counter()
    try:
        db.execute(text("SELECT 1"))
        db_check["latency_ms"] = int((time.perf_counter() - db_start) * 1000)
    except SQLAlchemyError as exc:
        db_check = {"status": "error", "error": str(exc)}
        overall_ok = False
    checks["database"] = db_check

    storage_check: dict[str, Any] = {"status": "ok", "backend": settings.backup_storage}
    storage_start = time.perf_counter()
    try:
        storage_check["backups"] = len(build_backup_store(settings).list_backup_directories())
        storage_check["latency_ms"] = int((time.perf_counter() - storage_start) * 1000)
    except BackupError as exc:
        storage_check = {"status": "error", "backend": settings.backup_storage, "error": str(exc)}
        overall_ok = False
    checks["backup_storage"] = storage_check

    payload = {"status": "ready" if overall_ok else "degraded", "checks": checks}
    status_code = status.HTTP_200_OK if overall_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=success_response(payload))


@router.get("/version", response_model=ResponseEnvelope)
def read_version(settings: Settings = Depends(get_settings)) -> dict:
    return success_response({"version": settings.app_version, "environment": settings.app_env}, message="Build information")


@router.get("/metrics", include_in_schema=False)
def get_metrics(settings: Settings = Depends(get_settings)) -> Response:
    if not settings.metrics_enabled:
        raise HTTPException(status_code=404, detail="Metrics endpoint is disabled")
    return metrics_response()
