"""Tests for the forward-only migration runner."""

from __future__ import annotations

from opencontext.db.connection import Database
from opencontext.db.migrations import INDEX_MIGRATIONS, METADATA_MIGRATIONS, run_migrations


def _fresh_conn(tmp_path, name="test.db"):
    return Database(tmp_path / name).connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone() is not None


# --- Metadata store ---

def test_metadata_migrations_create_tables(tmp_path):
    conn = _fresh_conn(tmp_path)
    version = run_migrations(conn, METADATA_MIGRATIONS)
    assert version == METADATA_MIGRATIONS[-1][0]
    assert _table_exists(conn, "source_documents")
    assert _table_exists(conn, "document_chunks")
    assert not _table_exists(conn, "chunk_contents")
    conn.close()


def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn, METADATA_MIGRATIONS)
    run_migrations(conn, METADATA_MIGRATIONS)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(METADATA_MIGRATIONS)
    conn.close()


# --- Chunk index ---

def test_index_migrations_create_tables(tmp_path):
    conn = _fresh_conn(tmp_path, "index.db")
    run_migrations(conn, INDEX_MIGRATIONS)
    assert _table_exists(conn, "chunk_contents")
    assert _table_exists(conn, "chunks_fts")
    assert not _table_exists(conn, "source_documents")
    conn.close()
