from __future__ import annotations

from typing import Any, Iterator

from app.core.config import Settings
from app.logging import get_logger
from app.services.backups.errors import BackupNotFound, StorageFailure
from app.services.backups.store import (
    DEFAULT_CHUNK_SIZE,
    BackupStore,
    validate_backup_name,
    validate_relative_path,
)

logger = get_logger()

_DELETE_BATCH_SIZE = 1000
_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


def _is_missing(exc: Exception) -> bool:
    response = getattr(exc, "response", None)
    if not isinstance(response, dict):
        return False
    code = str(response.get("Error", {}).get("Code", ""))
    return code in _MISSING_CODES


class S3BackupStore(BackupStore):
    """Backup namespace kept as key prefixes in an S3 compatible bucket.

    Directories do not exist on their own in S3, so a backup exists exactly
    when at least one object lives under ``<prefix>/<name>/``.
    """

    def __init__(self, bucket: str, prefix: str = "backups", *, client: Any | None = None) -> None:
        super().__init__(prefix)
        if not bucket:
            raise StorageFailure("S3 backup storage requires a bucket name")
        self.bucket = bucket
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3BackupStore":
        if not settings.backup_s3_bucket:
            raise StorageFailure("BACKUP_S3_BUCKET is required when BACKUP_STORAGE=s3")
        return cls(bucket=settings.backup_s3_bucket, prefix=settings.backup_prefix, client=_build_client(settings))

    @property
    def client(self) -> Any:
        if self._client is None:
            raise StorageFailure("S3 client is not configured")
        return self._client

    def _directory_key(self, name: str) -> str:
        return f"{self.prefix}/{validate_backup_name(name)}/"

    def _file_key(self, name: str, path: str) -> str:
        return f"{self._directory_key(name)}{validate_relative_path(path)}"

    def _iter_objects(self, prefix: str) -> Iterator[dict[str, Any]]:
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                yield from page.get("Contents", []) or []
        except StorageFailure:
            raise
        except Exception as exc:  # noqa: BLE001
            raise StorageFailure(f"Unable to list s3://{self.bucket}/{prefix}: {exc}") from exc

    def list_backup_directories(self) -> list[str]:
        namespace = f"{self.prefix}/"
        names: list[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=namespace, Delimiter="/"):
                for entry in page.get("CommonPrefixes", []) or []:
                    name = entry.get("Prefix", "")[len(namespace) :].strip("/")
                    if name:
                        names.append(name)
        except StorageFailure:
            raise
        except Exception as exc:  # noqa: BLE001
            raise StorageFailure(f"Unable to list s3://{self.bucket}/{namespace}: {exc}") from exc
        return names

    def list_files(self, name: str) -> list[str]:
        directory = self._directory_key(name)
        files = sorted(
            entry["Key"][len(directory) :]
            for entry in self._iter_objects(directory)
            if entry.get("Key", "").startswith(directory) and not entry["Key"].endswith("/")
        )
        if not files:
            raise BackupNotFound(f"Backup directory not found: {name}")
        return files

    def directory_size(self, name: str) -> int:
        directory = self._directory_key(name)
        entries = [entry for entry in self._iter_objects(directory) if not entry.get("Key", "").endswith("/")]
        if not entries:
            raise BackupNotFound(f"Backup directory not found: {name}")
        return sum(int(entry.get("Size", 0) or 0) for entry in entries)

    def file_size(self, name: str, path: str) -> int:
        key = self._file_key(name, path)
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
        except Exception as exc:  # noqa: BLE001
            if _is_missing(exc):
                raise BackupNotFound(f"Backup file not found: {name}/{path}") from exc
            raise StorageFailure(f"Unable to stat s3://{self.bucket}/{key}: {exc}") from exc
        return int(response.get("ContentLength", 0) or 0)

    def _get_body(self, name: str, path: str) -> Any:
        key = self._file_key(name, path)
        try:
            return self.client.get_object(Bucket=self.bucket, Key=key)["Body"]
        except Exception as exc:  # noqa: BLE001
            if _is_missing(exc):
                raise BackupNotFound(f"Backup file not found: {name}/{path}") from exc
            raise StorageFailure(f"Unable to read s3://{self.bucket}/{key}: {exc}") from exc

    def read_file(self, name: str, path: str) -> bytes:
        body = self._get_body(name, path)
        try:
            return body.read()
        except Exception as exc:  # noqa: BLE001
            raise StorageFailure(f"Unable to read {name}/{path}: {exc}") from exc
        finally:
            body.close()

    def iter_file(self, name: str, path: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        body = self._get_body(name, path)
        try:
            for chunk in iter(lambda: body.read(chunk_size), b""):
                yield chunk
        except Exception as exc:  # noqa: BLE001
            raise StorageFailure(f"Unable to read {name}/{path}: {exc}") from exc
        finally:
            body.close()

    def write_file(self, name: str, path: str, data: bytes) -> None:
        key = self._file_key(name, path)
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data)
        except Exception as exc:  # noqa: BLE001
            raise StorageFailure(f"Unable to write s3://{self.bucket}/{key}: {exc}") from exc

    def file_exists(self, name: str, path: str) -> bool:
        try:
            self.file_size(name, path)
        except BackupNotFound:
            return False
        return True

    def directory_exists(self, name: str) -> bool:
        directory = self._directory_key(name)
        try:
            response = self.client.list_objects_v2(Bucket=self.bucket, Prefix=directory, MaxKeys=1)
        except Exception as exc:  # noqa: BLE001
            raise StorageFailure(f"Unable to inspect s3://{self.bucket}/{directory}: {exc}") from exc
        return int(response.get("KeyCount", len(response.get("Contents", []) or [])) or 0) > 0

    def delete_directory(self, name: str) -> bool:
        directory = self._directory_key(name)
        keys = [entry["Key"] for entry in self._iter_objects(directory) if entry.get("Key")]
        if not keys:
            return False
        for offset in range(0, len(keys), _DELETE_BATCH_SIZE):
            batch = keys[offset : offset + _DELETE_BATCH_SIZE]
            try:
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except Exception as exc:  # noqa: BLE001
                raise StorageFailure(f"Unable to delete backup {name}: {exc}") from exc
            errors = response.get("Errors") or []
            if errors:
                failed = ", ".join(str(item.get("Key")) for item in errors[:5])
                raise StorageFailure(f"Unable to delete backup {name}: {failed}")
        logger.info("backup_directory_deleted", backup=name, uri=f"s3://{self.bucket}/{directory}", objects=len(keys))
        return True

    def location(self, name: str) -> str:
        return f"s3://{self.bucket}/{self.prefix}/{name}"


def _build_client(settings: Settings) -> Any:
    try:
        import boto3  # type: ignore
    except ImportError as exc:
        logger.warning("backup_s3_dependency_missing")
        raise StorageFailure("S3 backup storage requires the boto3 package") from exc

    client_kwargs: dict[str, object] = {}
    if settings.backup_s3_region:
        client_kwargs["region_name"] = settings.backup_s3_region
    if settings.backup_s3_endpoint_url:
        client_kwargs["endpoint_url"] = settings.backup_s3_endpoint_url
    if settings.backup_s3_access_key and settings.backup_s3_secret_key:
        client_kwargs["aws_access_key_id"] = settings.backup_s3_access_key
        client_kwargs["aws_secret_access_key"] = settings.backup_s3_secret_key
    if not settings.backup_s3_use_ssl:
        client_kwargs["use_ssl"] = False
    return boto3.client("s3", **client_kwargs)


__all__ = ["S3BackupStore"]
