import os

os.environ.setdefault("EV_JWT_SECRET", "test-secret")
os.environ.setdefault("EV_AUTH_DB", "/tmp/ev_admin_test_auth.db")
os.environ.setdefault("DATABASE_URL", "postgresql://test@localhost:1/test")

import pytest
from fastapi.testclient import TestClient

import admin_api
import db_auth
from fakedb import FakeDB, FakePool
from middleware import get_current_user
from models import CurrentUser

TEST_USER = CurrentUser(user_id="7", name="Test Vendor", mobile="9000000001")


@pytest.fixture(autouse=True)
def audit_db(tmp_path, monkeypatch):
    """Fresh SQLite audit log per test."""
    monkeypatch.setattr(db_auth, "AUTH_DB_PATH", str(tmp_path / "audit.db"))
    db_auth.init_auth_db()


@pytest.fixture
def fake_db(monkeypatch):
    db = FakeDB()
    pool = FakePool(db)
    monkeypatch.setattr(admin_api, "_get_pool", lambda: pool)
    return db


@pytest.fixture
def cursor(fake_db):
    return FakePool(fake_db).getconn().cursor()


@pytest.fixture
def app(fake_db):
    return admin_api.create_app()


@pytest.fixture
def client(app):
    app.dependency_overrides[get_current_user] = lambda: TEST_USER
    return TestClient(app)


@pytest.fixture
def anon_client(app):
    return TestClient(app)


@pytest.fixture
def audit_rows():
    def _rows():
        with db_auth.get_auth_db() as conn:
            return [dict(r) for r in conn.execute("SELECT * FROM ev_mutations ORDER BY id")]
    return _rows
