from __future__ import annotations


class BackupError(Exception):
    """Base class for backup management failures."""


class BackupNotFound(BackupError):
    """The requested backup directory or file does not exist."""


class BackupNameError(BackupError):
    """A directory name is not a valid backup identifier."""


class InvalidBackupRequest(BackupError):
    """The caller asked for an unsupported category, format or table."""


class StorageFailure(BackupError):
    """The storage medium failed to read, write or delete."""


class ExternalProcessFailure(BackupError):
    """An export or restore collaborator failed to run."""

    def __init__(self, message: str, *, output: str = "", exit_code: int | None = None) -> None:
        super().__init__(message)
        self.output = output
        self.exit_code = exit_code


__all__ = [
    "BackupError",
    "BackupNameError",
    "BackupNotFound",
    "ExternalProcessFailure",
    "InvalidBackupRequest",
    "StorageFailure",
]
