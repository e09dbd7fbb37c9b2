from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import admin_backups, auth, system
from app.core.config import Settings, get_settings
from app.core.errors import ErrorCode, create_error_detail
from app.logging import RequestIdMiddleware, configure_logging, get_logger
from app.observability.metrics import MetricsMiddleware
from app.security import install_proxy_headers, install_security_middleware

load_dotenv()
configure_logging()
logger = get_logger()


def _install_middleware(app: FastAPI, settings: Settings) -> None:
    # added innermost first; proxy headers must rewrite the client before anything reads it
    origins = settings.cors_origins or []
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if settings.metrics_enabled:
        app.add_middleware(MetricsMiddleware)
    install_security_middleware(app, settings)
    app.add_middleware(RequestIdMiddleware)
    install_proxy_headers(app, settings)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    content = create_error_detail(ErrorCode.VALIDATION_ERROR, "Validation error", jsonable_encoder(exc.errors()))
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=content)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and {"code", "message"} <= detail.keys():
        content = {"data": None, **detail}
    else:
        message = detail if isinstance(detail, str) else "An unexpected error occurred"
        code = ErrorCode.NOT_FOUND if exc.status_code == status.HTTP_404_NOT_FOUND else ErrorCode.BAD_REQUEST
        content = create_error_detail(code, message)
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Digital Nomad Guide Admin",
        version=settings.app_version,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
    )
    app.state.settings = settings

    _install_middleware(app, settings)

    app.include_router(system.router)
    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(admin_backups.router)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)

    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info(
            "application_started",
            environment=settings.app_env,
            backup_storage=settings.backup_storage,
            export_runner=settings.backup_export_runner,
        )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("application_stopped", environment=settings.app_env)

    return app


app = create_app()
