"""SQLite connection layer with optional sqlite-vec extension."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec


class Database:
    """A single SQLite database file, optionally with sqlite-vec loaded.

    OpenContext keeps two of these: the metadata store (documents and chunk
    structure) and the chunk index (text, FTS5, vectors). Connections are
    shared across worker threads; each store serialises its own statements.
    """

    def __init__(self, db_path: Path | str, *, load_vec: bool = False) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
            load_vec: Load the sqlite-vec extension on connect.
        """
        self.db_path = Path(db_path)
        self.load_vec = load_vec
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec if requested, and return it."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30.0)
        conn.row_factory = sqlite3.Row
        if self.load_vec:
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
