from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("TRUSTED_PROXIES", "*")
os.environ.setdefault("ADMIN_EMAILS", "")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("BACKUP_BASE_DIR", tempfile.mkdtemp(prefix="nomad-backups-"))

from app.core.config import get_settings

get_settings.cache_clear()

from app.api.routes.admin_backups import get_backup_store, get_export_runner, get_restore_runner  # noqa: E402
from app.core.security import create_access_token, hash_password  # noqa: E402
from app.db import session as session_module  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.session import get_db  # noqa: E402
from app.main import create_app  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402
from app.services.backups import DatabaseExportRunner, DatabaseRestoreRunner, LocalBackupStore  # noqa: E402

DATABASE_URL = os.environ["DATABASE_URL"]
# one shared connection so the threadpool and the test see the same in-memory database
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

session_module.engine = engine
session_module.SessionLocal = TestingSessionLocal

app = create_app()
app.state.session_factory = TestingSessionLocal

ADMIN_PASSWORD = "changeme123"


@pytest.fixture(autouse=True)
def clean_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


def override_get_db() -> Generator[Session, None, None]:
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture()
def db_engine() -> Engine:
    return engine


@pytest.fixture()
def backup_store(tmp_path: Path) -> LocalBackupStore:
    return LocalBackupStore(tmp_path / "app", prefix="backups")


@pytest.fixture()
def client(backup_store: LocalBackupStore) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_backup_store] = lambda: backup_store
    app.dependency_overrides[get_export_runner] = lambda: DatabaseExportRunner(engine, backup_store)
    app.dependency_overrides[get_restore_runner] = lambda: DatabaseRestoreRunner(engine, backup_store)
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        for dependency in (get_backup_store, get_export_runner, get_restore_runner):
            app.dependency_overrides.pop(dependency, None)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def _create_user(session: Session, email: str, role: UserRole) -> User:
    user = User(name=email.split("@")[0], email=email, hashed_password=hash_password(ADMIN_PASSWORD), role=role)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture()
def admin_user(db_session: Session) -> User:
    return _create_user(db_session, "admin@example.com", UserRole.ADMIN)


@pytest.fixture()
def member_user(db_session: Session) -> User:
    return _create_user(db_session, "member@example.com", UserRole.MEMBER)


def _auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


@pytest.fixture()
def admin_headers(admin_user: User) -> dict[str, str]:
    return _auth_headers(admin_user)


@pytest.fixture()
def member_headers(member_user: User) -> dict[str, str]:
    return _auth_headers(member_user)


@pytest.fixture()
def make_backup(backup_store: LocalBackupStore) -> Callable[..., str]:
    """Write a backup directory straight into the store."""

    def factory(name: str, files: dict[str, bytes] | None = None) -> str:
        for path, payload in (files or {"users.json": b"[]"}).items():
            backup_store.write_file(name, path, payload)
        return name

    return factory
