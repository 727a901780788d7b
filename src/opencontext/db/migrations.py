"""Forward-only migration runners for the metadata store and the chunk index.

Vec tables (vec_chunks_*) are NOT migration-managed; ChunkIndex creates them on demand.
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

# ------------------------------------------------------------------
# Metadata store: documents + chunk structure (never chunk text)
# ------------------------------------------------------------------

_METADATA_V1_SQL = """
CREATE TABLE IF NOT EXISTS source_documents (
    id                  TEXT PRIMARY KEY,
    original_filename   TEXT NOT NULL,
    storage_key         TEXT NOT NULL,
    file_type           TEXT NOT NULL,
    file_size           INTEGER NOT NULL,
    checksum            TEXT NOT NULL CONSTRAINT uq_file_checksum UNIQUE,
    status              TEXT NOT NULL,
    error_message       TEXT,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    last_ingested_at    TEXT
);

CREATE INDEX IF NOT EXISTS idx_source_documents_status ON source_documents(status);
CREATE INDEX IF NOT EXISTS idx_source_documents_created ON source_documents(created_at);

CREATE TABLE IF NOT EXISTS document_chunks (
    id                      TEXT PRIMARY KEY,
    document_id             TEXT NOT NULL REFERENCES source_documents(id) ON DELETE CASCADE,
    parent_id               TEXT REFERENCES document_chunks(id) ON DELETE CASCADE,
    title                   TEXT NOT NULL DEFAULT '',
    element_type            TEXT NOT NULL,
    hierarchy_level         INTEGER NOT NULL CHECK (hierarchy_level >= 1),
    sequence_in_document    INTEGER NOT NULL CHECK (sequence_in_document >= 1),
    indexed                 INTEGER NOT NULL DEFAULT 0,
    created_at              TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_document_chunks_document ON document_chunks(document_id);
CREATE INDEX IF NOT EXISTS idx_document_chunks_parent ON document_chunks(parent_id);

-- Siblings (and roots of one document) never share a sequence number.
CREATE UNIQUE INDEX IF NOT EXISTS uq_chunk_sibling_sequence
    ON document_chunks(document_id, COALESCE(parent_id, ''), sequence_in_document);
"""

# ------------------------------------------------------------------
# Chunk index: searchable payload
# ------------------------------------------------------------------

_INDEX_V1_SQL = """
CREATE TABLE IF NOT EXISTS chunk_contents (
    id                      INTEGER PRIMARY KEY,
    chunk_id                TEXT NOT NULL UNIQUE,
    document_id             TEXT NOT NULL,
    content                 TEXT NOT NULL,
    title                   TEXT NOT NULL DEFAULT '',
    breadcrumbs             TEXT NOT NULL DEFAULT '[]',
    hierarchy_level         INTEGER NOT NULL,
    sequence_in_document    INTEGER NOT NULL,
    language                TEXT NOT NULL DEFAULT 'en',
    file_type               TEXT NOT NULL,
    created_at              DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_chunk_contents_document ON chunk_contents(document_id);

CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(content, tokenize='porter unicode61');
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
METADATA_MIGRATIONS: list[tuple[int, str]] = [
    (1, _METADATA_V1_SQL),
]

INDEX_MIGRATIONS: list[tuple[int, str]] = [
    (1, _INDEX_V1_SQL),
]


def run_migrations(conn: sqlite3.Connection, migrations: list[tuple[int, str]]) -> int:
    """Apply all pending *migrations* in ascending version order.

    Idempotent: safe to call on a database at any version.

    Returns:
        The schema version after migrating.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in migrations:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
            current = version
    return current
