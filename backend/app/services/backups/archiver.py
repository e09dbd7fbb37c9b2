from __future__ import annotations

import os
import tempfile
import zipfile
from pathlib import PurePosixPath
from typing import Iterator

from app.logging import get_logger
from app.services.backups.errors import BackupNotFound, StorageFailure
from app.services.backups.store import DEFAULT_CHUNK_SIZE, BackupStore, validate_backup_name

logger = get_logger()


class StagedArchive:
    """A finished zip archive staged in a temporary file.

    The file is removed by ``close()``; iterating to the end closes it too.
    """

    def __init__(self, filename: str, path: str, size_bytes: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.filename = filename
        self.path = path
        self.size_bytes = size_bytes
        self.chunk_size = chunk_size
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def iter_bytes(self) -> Iterator[bytes]:
        if self._closed:
            raise StorageFailure(f"Archive {self.filename} is already released")
        try:
            with open(self.path, "rb") as stream:
                for chunk in iter(lambda: stream.read(self.chunk_size), b""):
                    yield chunk
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("backup_archive_cleanup_failed", path=self.path, reason=str(exc))

    def __enter__(self) -> "StagedArchive":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def archive_filename(name: str) -> str:
    return f"backup_{name}.zip"


class BackupArchiver:
    def __init__(
        self,
        store: BackupStore,
        *,
        staging_dir: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.store = store
        self.staging_dir = staging_dir
        self.chunk_size = chunk_size

    def build(self, name: str) -> StagedArchive:
        name = validate_backup_name(name)
        if not self.store.directory_exists(name):
            raise BackupNotFound(f"Backup not found: {name}")
        files = self.store.list_files(name)
        if not files:
            raise BackupNotFound(f"Backup {name} has no files to archive")

        if self.staging_dir:
            os.makedirs(self.staging_dir, exist_ok=True)
        descriptor, path = tempfile.mkstemp(prefix=f"backup_{name}_", suffix=".zip", dir=self.staging_dir)
        os.close(descriptor)
        staged = StagedArchive(archive_filename(name), path, 0, chunk_size=self.chunk_size)
        try:
            written: set[str] = set()
            with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                for relative in files:
                    # entries are flattened to their base name
                    entry = PurePosixPath(relative).name
                    if entry in written:
                        logger.warning("backup_archive_duplicate_entry", backup=name, path=relative)
                        continue
                    written.add(entry)
                    with archive.open(entry, "w", force_zip64=True) as sink:
                        for chunk in self.store.iter_file(name, relative, self.chunk_size):
                            sink.write(chunk)
            staged.size_bytes = os.path.getsize(path)
        except OSError as exc:
            staged.close()
            raise StorageFailure(f"Unable to build archive for {name}: {exc}") from exc
        except BaseException:
            staged.close()
            raise

        logger.info("backup_archive_built", backup=name, files=len(written), size_bytes=staged.size_bytes)
        return staged


__all__ = ["BackupArchiver", "StagedArchive", "archive_filename"]
