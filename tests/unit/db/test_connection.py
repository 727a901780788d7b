"""Tests for the Database connection layer."""

from __future__ import annotations

from opencontext.db.connection import Database


def test_connect_creates_file_and_parent_dirs(tmp_path):
    db_path = tmp_path / "nested" / "data" / "metadata.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_sqlite_vec_loaded_on_request(tmp_path):
    conn = Database(tmp_path / "index.db", load_vec=True).connect()
    version = conn.execute("SELECT vec_version()").fetchone()[0]
    conn.close()
    assert version.startswith("v")


def test_foreign_keys_enabled(tmp_path):
    conn = Database(tmp_path / "metadata.db").connect()
    assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
    conn.close()


def test_wal_journal_mode(tmp_path):
    conn = Database(tmp_path / "metadata.db").connect()
    assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
    conn.close()


def test_context_manager_closes(tmp_path):
    db = Database(tmp_path / "metadata.db")
    with db as conn:
        conn.execute("SELECT 1")
    assert db._conn is None
