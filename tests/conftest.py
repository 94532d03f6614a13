"""
Shared fixtures: every test gets a fresh SQLite file, inline outbox dispatch and an empty lock event bus.
"""

import os
import tempfile

import pytest

# Module-level config reads happen at import time; point them at a scratch location first
os.environ.setdefault("DB_PATH", tempfile.mkstemp(suffix='.db')[1])
os.environ["OUTBOX_DISPATCH"] = "inline"
os.environ["BACKUP_ENABLED"] = "false"

from src.core.dao import insert_user
from src.core.db import init_db
from src.core.events import lock_events
from src.core.outbox import outbox
from src.core.schema import UserProfile, UserRole, to_db_ts, utc_now


@pytest.fixture(autouse=True)
def fresh_db(tmp_path, monkeypatch):
    """Isolated database and side-effect configuration per test."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "memos.db"))
    monkeypatch.setenv("OUTBOX_DISPATCH", "inline")
    monkeypatch.setenv("BACKUP_ENABLED", "false")
    monkeypatch.setenv("BACKUP_DIR", str(tmp_path / "backups"))
    monkeypatch.delenv("MAIL_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("BACKUP_UPLOAD_URL", raising=False)
    init_db()
    lock_events.clear()

    handlers = dict(outbox._handlers)
    yield tmp_path
    outbox._handlers.clear()
    outbox._handlers.update(handlers)
    lock_events.clear()


def make_user(user_id, role=UserRole.FACULTY.value, department=None, is_active=True):
    return insert_user(UserProfile(
        id=user_id,
        email=f"{user_id}@example.edu",
        first_name=user_id.capitalize(),
        role=role,
        department=department,
        is_active=is_active,
        updated_at=to_db_ts(utc_now()),
    ))


@pytest.fixture
def user_factory():
    return make_user


@pytest.fixture
def directory():
    """Two admins, a secretary, three faculty in dept X, one in dept Y, one inactive."""
    make_user("admin1", UserRole.ADMIN.value)
    make_user("admin2", UserRole.ADMIN.value)
    make_user("sec1", UserRole.SECRETARY.value, "X")
    for user_id in ("f1", "f2", "f3"):
        make_user(user_id, department="X")
    make_user("f4", department="Y")
    make_user("f5", department="X", is_active=False)
    return {
        "admins": ["admin1", "admin2"],
        "secretary": "sec1",
        "dept_x": ["f1", "f2", "f3"],
        "dept_y": ["f4"],
    }


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from src.api.main import app
    return TestClient(app)
