from functools import lru_cache
from typing import Annotated, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "script-src 'self' 'unsafe-inline' 'unsafe-eval' https://cdn.jsdelivr.net https://unpkg.com; "
    "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com https://fonts.bunny.net https://cdn.jsdelivr.net https://unpkg.com; "
    "font-src 'self' https://fonts.gstatic.com https://fonts.bunny.net; "
    "img-src 'self' data: https: https://*.tile.openstreetmap.org https://*.tile.osm.org; "
    "connect-src 'self' ws: wss: https://*.tile.openstreetmap.org https://*.tile.osm.org; "
    "frame-ancestors 'none';"
)
DEFAULT_PERMISSIONS_POLICY = (
    "geolocation=(), microphone=(), camera=(), payment=(), usb=(), magnetometer=(), gyroscope=(), speaker=()"
)


class Settings(BaseSettings):
    app_env: str = "local"
    app_version: str = "0.1.0"
    secret_key: str = "replace_me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    token_clock_skew_seconds: int = 0
    database_url: str = "sqlite+pysqlite:///./storage/nomad_guide.db"
    cors_origins: Annotated[List[str], NoDecode] = []
    trusted_proxies: Annotated[List[str], NoDecode] = ["127.0.0.1"]
    admin_emails: Annotated[List[str], NoDecode] = ["admin@digitalnomad.com"]
    log_level: str = "INFO"
    log_json: bool = True
    redact_fields: Annotated[List[str], NoDecode] = ["authorization", "password", "hashed_password", "token", "secret"]
    redaction_placeholder: str = "***"
    metrics_enabled: bool = False
    metrics_namespace: str = "nomadguide"
    security_headers_enabled: bool = True
    content_security_policy: str = DEFAULT_CONTENT_SECURITY_POLICY
    permissions_policy: str = DEFAULT_PERMISSIONS_POLICY
    banned_ip_check_enabled: bool = True
    backup_storage: str = "local"
    backup_base_dir: str = "./storage/app"
    backup_prefix: str = "backups"
    backup_s3_bucket: str | None = None
    backup_s3_region: str | None = None
    backup_s3_endpoint_url: str | None = None
    backup_s3_access_key: str | None = None
    backup_s3_secret_key: str | None = None
    backup_s3_use_ssl: bool = True
    backup_default_format: str = "json"
    backup_export_runner: str = "database"
    backup_export_command: Annotated[List[str], NoDecode] = [
        "nomad-admin",
        "export",
        "--type",
        "{category}",
        "--format",
        "{format}",
        "--target",
        "{target}",
    ]
    backup_restore_command: Annotated[List[str], NoDecode] = [
        "nomad-admin",
        "restore",
        "{target}",
        "--table",
        "{table}",
        "--yes",
    ]
    backup_command_timeout_seconds: int = 1800
    backup_retention_days: int = 30
    backup_keep_latest: int = 5
    backup_recent_limit: int = 5
    backup_archive_chunk_bytes: int = 65536
    backup_staging_dir: str | None = None

    model_config = SettingsConfigDict(
        env_file=(".env", "/app/.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("access_token_expire_minutes", mode="before")
    @classmethod
    def validate_access_token_expiry(cls, value: int | str) -> int:
        int_value = int(value) if isinstance(value, str) else value
        if int_value <= 0:
            raise ValueError("ACCESS_TOKEN_EXPIRE_MINUTES must be greater than zero")
        return int_value

    @field_validator("token_clock_skew_seconds", mode="before")
    @classmethod
    def validate_clock_skew(cls, value: int | str) -> int:
        int_value = int(value) if isinstance(value, str) else value
        if int_value < 0:
            raise ValueError("TOKEN_CLOCK_SKEW_SECONDS must be zero or a positive integer")
        return int_value

    @field_validator(
        "backup_command_timeout_seconds",
        "backup_retention_days",
        "backup_keep_latest",
        "backup_recent_limit",
        "backup_archive_chunk_bytes",
        mode="before",
    )
    @classmethod
    def validate_positive_integers(cls, value: int | str) -> int:
        int_value = int(value) if isinstance(value, str) else value
        if int_value <= 0:
            raise ValueError("Value must be greater than zero")
        return int_value

    @field_validator("cors_origins", "trusted_proxies", mode="before")
    @classmethod
    def split_host_lists(cls, value: List[str] | str | None) -> List[str]:
        if value is None:
            return []
        if isinstance(value, list):
            return [item.strip() for item in value if isinstance(item, str) and item.strip()]
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        raise ValueError("Invalid host list format")

    @field_validator("admin_emails", "redact_fields", mode="before")
    @classmethod
    def split_lowercase_lists(cls, value: List[str] | str | None) -> List[str]:
        if value is None:
            return []
        if isinstance(value, list):
            return [item.strip().lower() for item in value if isinstance(item, str) and item.strip()]
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        raise ValueError("Invalid list format")

    @field_validator("backup_export_command", "backup_restore_command", mode="before")
    @classmethod
    def split_command(cls, value: List[str] | str | None) -> List[str]:
        if isinstance(value, str):
            parts = value.split()
        elif isinstance(value, list):
            parts = [str(item) for item in value]
        else:
            raise ValueError("Command must be a string or a list of arguments")
        if not parts:
            raise ValueError("Command cannot be empty")
        return parts

    @field_validator("redaction_placeholder", mode="before")
    @classmethod
    def validate_redaction_placeholder(cls, value: str | None) -> str:
        if value is None:
            return "***"
        placeholder = value.strip()
        if not placeholder:
            raise ValueError("REDACTION_PLACEHOLDER cannot be empty")
        return placeholder

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: str | None) -> str:
        level = str(value or "INFO").strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("LOG_LEVEL must be a standard logging level name")
        return level

    @field_validator("metrics_namespace", mode="before")
    @classmethod
    def normalize_metrics_namespace(cls, value: str | None) -> str:
        if value is None:
            return "nomadguide"
        namespace = value.strip()
        if not namespace:
            raise ValueError("METRICS_NAMESPACE cannot be empty")
        return namespace

    @field_validator("backup_storage", mode="before")
    @classmethod
    def normalize_backup_storage(cls, value: str | None) -> str:
        storage = str(value or "local").strip().lower()
        if storage not in {"local", "s3"}:
            raise ValueError("BACKUP_STORAGE must be either 'local' or 's3'")
        return storage

    @field_validator("backup_export_runner", mode="before")
    @classmethod
    def normalize_export_runner(cls, value: str | None) -> str:
        runner = str(value or "database").strip().lower()
        if runner not in {"database", "command"}:
            raise ValueError("BACKUP_EXPORT_RUNNER must be either 'database' or 'command'")
        return runner

    @field_validator("backup_default_format", mode="before")
    @classmethod
    def normalize_default_format(cls, value: str | None) -> str:
        fmt = str(value or "json").strip().lower()
        if fmt not in {"json", "csv", "sql"}:
            raise ValueError("BACKUP_DEFAULT_FORMAT must be one of json, csv, sql")
        return fmt

    @field_validator("backup_base_dir", mode="before")
    @classmethod
    def normalize_backup_base_dir(cls, value: str | None) -> str:
        base_dir = str(value or "").strip()
        if not base_dir:
            raise ValueError("BACKUP_BASE_DIR cannot be empty")
        return base_dir

    @field_validator("backup_prefix", mode="before")
    @classmethod
    def normalize_backup_prefix(cls, value: str | None) -> str:
        prefix = str(value or "").strip().replace("\\", "/").strip("/")
        if not prefix:
            raise ValueError("BACKUP_PREFIX cannot be empty")
        return prefix

    @field_validator("backup_staging_dir", "backup_s3_bucket", "backup_s3_endpoint_url", mode="before")
    @classmethod
    def normalize_optional_strings(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = str(value).strip()
        return normalized or None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
