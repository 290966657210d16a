import pytest
from fastapi.testclient import TestClient

import admin_api
import trips


def test_read_returns_connection_to_pool(fake_db):
    with admin_api.get_connection() as conn:
        conn.cursor().execute("SELECT COUNT(*) FROM charging_station")
    assert fake_db.checked_out == 0
    assert fake_db.discarded == 0


def test_read_discards_connection_that_cannot_roll_back(fake_db, caplog):
    fake_db.rollback_error = RuntimeError("connection already closed")
    with admin_api.get_connection():
        pass
    assert fake_db.checked_out == 0
    assert fake_db.discarded == 1
    assert "failed rollback" in caplog.text


def test_failed_transaction_keeps_original_error_when_rollback_fails(fake_db):
    fake_db.rollback_error = RuntimeError("connection already closed")
    with pytest.raises(ValueError, match="bad row"):
        with admin_api.transaction():
            raise ValueError("bad row")
    assert fake_db.checked_out == 0
    assert fake_db.discarded == 1


def test_committed_transaction_is_not_rolled_back(fake_db):
    fake_db.rollback_error = RuntimeError("should not roll back")
    with admin_api.transaction():
        pass
    assert fake_db.commits == 1
    assert (fake_db.checked_out, fake_db.discarded) == (0, 0)


def test_lifespan_prepares_storage(app, fake_db, audit_rows):
    with TestClient(app):
        pass
    assert fake_db.trip_columns == set(trips.STORY_COLUMNS)
    assert audit_rows() == []
    assert fake_db.checked_out == 0
