from __future__ import annotations

import abc
import re
import shutil
from pathlib import Path
from typing import Iterator

from app.logging import get_logger
from app.services.backups.errors import BackupNameError, BackupNotFound, StorageFailure

logger = get_logger()

DEFAULT_CHUNK_SIZE = 64 * 1024
_SAFE_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def validate_backup_name(name: str) -> str:
    candidate = (name or "").strip()
    if not _SAFE_SEGMENT_PATTERN.match(candidate) or ".." in candidate:
        raise BackupNameError(f"Invalid backup name: {name!r}")
    return candidate


def validate_relative_path(path: str) -> str:
    candidate = (path or "").strip()
    if not candidate or candidate.startswith("/") or "\\" in candidate:
        raise BackupNameError(f"Invalid backup file path: {path!r}")
    for segment in candidate.split("/"):
        if not _SAFE_SEGMENT_PATTERN.match(segment) or ".." in segment:
            raise BackupNameError(f"Invalid backup file path: {path!r}")
    return candidate


class BackupStore(abc.ABC):
    """Hierarchical storage rooted at the ``backups/`` namespace.

    Each backup is one directory directly under the namespace. File paths are
    always relative to their backup directory and use ``/`` separators.
    Implementations never cache; every call re-reads the medium.
    """

    def __init__(self, prefix: str = "backups") -> None:
        self.prefix = prefix.strip("/") or "backups"

    @abc.abstractmethod
    def list_backup_directories(self) -> list[str]:
        """Return the base names of every directory in the namespace."""

    @abc.abstractmethod
    def list_files(self, name: str) -> list[str]:
        """Return every file of a backup, recursively, sorted by path."""

    @abc.abstractmethod
    def file_size(self, name: str, path: str) -> int:
        ...

    @abc.abstractmethod
    def read_file(self, name: str, path: str) -> bytes:
        ...

    @abc.abstractmethod
    def write_file(self, name: str, path: str, data: bytes) -> None:
        ...

    @abc.abstractmethod
    def file_exists(self, name: str, path: str) -> bool:
        ...

    @abc.abstractmethod
    def directory_exists(self, name: str) -> bool:
        ...

    @abc.abstractmethod
    def delete_directory(self, name: str) -> bool:
        """Remove a backup and everything below it. False when it does not exist."""

    def iter_file(self, name: str, path: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        payload = self.read_file(name, path)
        for offset in range(0, len(payload), chunk_size):
            yield payload[offset : offset + chunk_size]

    def directory_size(self, name: str) -> int:
        return sum(self.file_size(name, path) for path in self.list_files(name))

    def location(self, name: str) -> str:
        return f"{self.prefix}/{name}"


class LocalBackupStore(BackupStore):
    def __init__(self, base_dir: str | Path, prefix: str = "backups") -> None:
        super().__init__(prefix)
        self._root = (Path(base_dir).expanduser().resolve() / self.prefix)

    @property
    def root(self) -> Path:
        return self._root

    def _directory(self, name: str) -> Path:
        return self._root / validate_backup_name(name)

    def _file(self, name: str, path: str) -> Path:
        return self._directory(name) / validate_relative_path(path)

    def list_backup_directories(self) -> list[str]:
        if not self._root.exists():
            return []
        try:
            return [entry.name for entry in self._root.iterdir() if entry.is_dir()]
        except OSError as exc:
            raise StorageFailure(f"Unable to list {self._root}: {exc}") from exc

    def list_files(self, name: str) -> list[str]:
        directory = self._directory(name)
        if not directory.is_dir():
            raise BackupNotFound(f"Backup directory not found: {name}")
        try:
            return sorted(entry.relative_to(directory).as_posix() for entry in directory.rglob("*") if entry.is_file())
        except OSError as exc:
            raise StorageFailure(f"Unable to list files of {name}: {exc}") from exc

    def file_size(self, name: str, path: str) -> int:
        target = self._file(name, path)
        if not target.is_file():
            raise BackupNotFound(f"Backup file not found: {name}/{path}")
        try:
            return target.stat().st_size
        except OSError as exc:
            raise StorageFailure(f"Unable to stat {name}/{path}: {exc}") from exc

    def read_file(self, name: str, path: str) -> bytes:
        target = self._file(name, path)
        if not target.is_file():
            raise BackupNotFound(f"Backup file not found: {name}/{path}")
        try:
            return target.read_bytes()
        except OSError as exc:
            raise StorageFailure(f"Unable to read {name}/{path}: {exc}") from exc

    def iter_file(self, name: str, path: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        target = self._file(name, path)
        if not target.is_file():
            raise BackupNotFound(f"Backup file not found: {name}/{path}")
        try:
            with target.open("rb") as stream:
                for chunk in iter(lambda: stream.read(chunk_size), b""):
                    yield chunk
        except OSError as exc:
            raise StorageFailure(f"Unable to read {name}/{path}: {exc}") from exc

    def write_file(self, name: str, path: str, data: bytes) -> None:
        target = self._file(name, path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageFailure(f"Unable to write {name}/{path}: {exc}") from exc

    def file_exists(self, name: str, path: str) -> bool:
        return self._file(name, path).is_file()

    def directory_exists(self, name: str) -> bool:
        return self._directory(name).is_dir()

    def delete_directory(self, name: str) -> bool:
        directory = self._directory(name)
        if not directory.is_dir():
            return False
        try:
            shutil.rmtree(directory)
        except OSError as exc:
            raise StorageFailure(f"Unable to delete backup {name}: {exc}") from exc
        logger.info("backup_directory_deleted", backup=name, path=str(directory))
        return True


__all__ = [
    "BackupStore",
    "DEFAULT_CHUNK_SIZE",
    "LocalBackupStore",
    "validate_backup_name",
    "validate_relative_path",
]
