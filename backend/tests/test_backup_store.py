from __future__ import annotations

from pathlib import Path

import pytest

from app.services.backups import BackupNameError, BackupNotFound, LocalBackupStore
from app.services.backups.store import validate_backup_name, validate_relative_path


@pytest.fixture()
def store(tmp_path: Path) -> LocalBackupStore:
    return LocalBackupStore(tmp_path, prefix="backups")


def test_namespace_lives_under_prefix(store: LocalBackupStore, tmp_path: Path) -> None:
    store.write_file("2024-05-01_10-00-00", "users.json", b"[]")
    assert (tmp_path / "backups" / "2024-05-01_10-00-00" / "users.json").read_bytes() == b"[]"
    assert store.location("2024-05-01_10-00-00") == "backups/2024-05-01_10-00-00"


def test_missing_namespace_lists_nothing(store: LocalBackupStore) -> None:
    assert store.list_backup_directories() == []


def test_list_backup_directories_ignores_plain_files(store: LocalBackupStore) -> None:
    store.write_file("2024-05-01_10-00-00", "users.json", b"[]")
    (store.root / "stray.txt").write_text("not a backup")
    assert store.list_backup_directories() == ["2024-05-01_10-00-00"]


def test_list_files_is_recursive_and_sorted(store: LocalBackupStore) -> None:
    name = "2024-05-01_10-00-00"
    store.write_file(name, "users.json", b"[1]")
    store.write_file(name, "nested/jobs.json", b"[2]")
    store.write_file(name, "backup_summary.json", b"{}")

    assert store.list_files(name) == ["backup_summary.json", "nested/jobs.json", "users.json"]
    assert store.directory_size(name) == 7


def test_list_files_of_missing_backup(store: LocalBackupStore) -> None:
    with pytest.raises(BackupNotFound):
        store.list_files("2024-05-01_10-00-00")


def test_file_size_and_read(store: LocalBackupStore) -> None:
    name = "2024-05-01_10-00-00"
    store.write_file(name, "users.csv", b"id,name\n")
    assert store.file_size(name, "users.csv") == 8
    assert store.read_file(name, "users.csv") == b"id,name\n"
    assert store.file_exists(name, "users.csv")
    assert not store.file_exists(name, "jobs.csv")
    with pytest.raises(BackupNotFound):
        store.read_file(name, "jobs.csv")


def test_iter_file_streams_in_chunks(store: LocalBackupStore) -> None:
    name = "2024-05-01_10-00-00"
    store.write_file(name, "blob.bin", b"abcdefghij")
    assert list(store.iter_file(name, "blob.bin", chunk_size=4)) == [b"abcd", b"efgh", b"ij"]


def test_delete_directory(store: LocalBackupStore) -> None:
    name = "2024-05-01_10-00-00"
    store.write_file(name, "nested/users.json", b"[]")

    assert store.delete_directory(name) is True
    assert not store.directory_exists(name)
    assert store.delete_directory(name) is False


@pytest.mark.parametrize("name", ["", "..", "../etc", "a/b", ".hidden", "name with space"])
def test_invalid_backup_names_rejected(name: str) -> None:
    with pytest.raises(BackupNameError):
        validate_backup_name(name)


@pytest.mark.parametrize("path", ["", "/etc/passwd", "../users.json", "a/../b.json", "a\\b.json"])
def test_invalid_relative_paths_rejected(path: str) -> None:
    with pytest.raises(BackupNameError):
        validate_relative_path(path)


def test_traversal_never_reaches_outside_namespace(store: LocalBackupStore) -> None:
    with pytest.raises(BackupNameError):
        store.read_file("..", "notes.md")
    with pytest.raises(BackupNameError):
        store.delete_directory("../backups")
