"""
SQLite connection manager for the admin audit database.

Manages:
  - ev_mutations: one row per admin write (station actions, network
    deletes and merges, trip story reviews)
"""

import os
import sqlite3
import logging
from contextlib import contextmanager

logger = logging.getLogger("ev-admin.auth-db")

AUTH_DB_PATH = os.environ.get("EV_AUTH_DB", os.path.join(os.getcwd(), "ev_auth.db"))


def _get_connection() -> sqlite3.Connection:
    conn = sqlite3.connect(AUTH_DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


@contextmanager
def get_auth_db():
    """Context manager for the audit SQLite database."""
    conn = _get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_auth_db():
    """Create audit tables if they don't exist."""
    with get_auth_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS ev_mutations (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp   TEXT NOT NULL DEFAULT (datetime('now')),
                user_id     TEXT NOT NULL,
                user_name   TEXT NOT NULL DEFAULT '',
                action      TEXT NOT NULL,
                table_name  TEXT NOT NULL,
                record_id   TEXT NOT NULL,
                new_values  TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_ev_mutations_table
                ON ev_mutations (table_name, record_id);

            CREATE INDEX IF NOT EXISTS idx_ev_mutations_user
                ON ev_mutations (user_id, timestamp);
        """)

    logger.info("Audit database initialized at %s", AUTH_DB_PATH)
