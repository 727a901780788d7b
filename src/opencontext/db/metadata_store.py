"""Metadata store: source documents and the structural chunk forest.

Chunks live in a flat table keyed by id with a parent reference; children are
derived by query, and subtree purges walk the ids with a recursive CTE. Chunk
text is never stored here (see ChunkIndex).

All status writes go through compare_and_set_status(), which only succeeds
when the row still holds the expected prior status.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from opencontext.db.migrations import METADATA_MIGRATIONS, run_migrations
from opencontext.db.models import (
    DocumentChunk,
    DocumentFilter,
    FileType,
    IngestionStatus,
    Page,
    SourceDocument,
    format_ts,
    utc_now,
)
from opencontext.errors import StaleStatusError

_DOCUMENT_COLUMNS = (
    "id, original_filename, storage_key, file_type, file_size, checksum, status, "
    "error_message, created_at, updated_at, last_ingested_at"
)
_CHUNK_COLUMNS = (
    "id, document_id, parent_id, title, element_type, hierarchy_level, "
    "sequence_in_document, indexed, created_at"
)


class MetadataStore:
    """Data access layer for documents and chunk structure.

    Wraps an open sqlite3.Connection shared across threads; a re-entrant lock
    serialises statements and transactions on it. The connection is owned by
    the caller and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.RLock()

    def initialize(self) -> None:
        with self._lock:
            run_migrations(self._conn, METADATA_MIGRATIONS)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except BaseException:
                self._conn.rollback()
                raise

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def insert_document(self, doc: SourceDocument) -> SourceDocument:
        """Insert a new document row and return it with timestamps filled in.

        Raises:
            sqlite3.IntegrityError: If the checksum already exists
                (constraint ``uq_file_checksum``).
        """
        now = utc_now()
        doc.created_at = doc.created_at or now
        doc.updated_at = now
        with self._transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO source_documents ({_DOCUMENT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    doc.id,
                    doc.original_filename,
                    doc.storage_key,
                    doc.file_type.value,
                    doc.file_size,
                    doc.checksum,
                    doc.status.value,
                    doc.error_message,
                    doc.created_at,
                    doc.updated_at,
                    doc.last_ingested_at,
                ),
            )
        return doc

    def get_document(self, document_id: str) -> SourceDocument | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM source_documents WHERE id = ?",
                (document_id,),
            ).fetchone()
        return _row_to_document(row) if row else None

    def get_document_by_checksum(self, checksum: str) -> SourceDocument | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM source_documents WHERE checksum = ?",
                (checksum,),
            ).fetchone()
        return _row_to_document(row) if row else None

    def list_documents(self, filters: DocumentFilter, page: int = 0, size: int = 20) -> Page:
        """Return one page of documents, newest first.

        Args:
            filters: Status, filename substring (case-insensitive) and
                inclusive created / last-ingested time ranges.
            page: 0-based page number.
            size: Page size (>= 1).
        """
        clauses: list[str] = []
        params: list[object] = []
        if filters.status is not None:
            clauses.append("status = ?")
            params.append(IngestionStatus(filters.status).value)
        if filters.filename:
            clauses.append("LOWER(original_filename) LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(filters.filename.lower())}%")
        for column, bound, op in (
            ("created_at", filters.created_from, ">="),
            ("created_at", filters.created_to, "<="),
            ("last_ingested_at", filters.ingested_from, ">="),
            ("last_ingested_at", filters.ingested_to, "<="),
        ):
            if bound is not None:
                clauses.append(f"{column} {op} ?")
                params.append(format_ts(bound))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._lock:
            total = self._conn.execute(
                f"SELECT COUNT(*) FROM source_documents {where}", params
            ).fetchone()[0]
            rows = self._conn.execute(
                f"""
                SELECT {_DOCUMENT_COLUMNS} FROM source_documents {where}
                ORDER BY created_at DESC, id
                LIMIT ? OFFSET ?
                """,
                [*params, size, page * size],
            ).fetchall()
        return Page(
            items=[_row_to_document(r) for r in rows],
            page=page,
            size=size,
            total_elements=total,
        )

    def documents_in_status(self, statuses: Iterable[IngestionStatus]) -> list[SourceDocument]:
        values = [IngestionStatus(s).value for s in statuses]
        if not values:
            return []
        placeholders = ",".join("?" * len(values))
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {_DOCUMENT_COLUMNS} FROM source_documents
                WHERE status IN ({placeholders}) ORDER BY created_at
                """,
                values,
            ).fetchall()
        return [_row_to_document(r) for r in rows]

    def completed_document_ids(self) -> set[str]:
        """Ids of every document a reader is allowed to see."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT id FROM source_documents WHERE status = ?",
                (IngestionStatus.COMPLETED.value,),
            ).fetchall()
        return {r["id"] for r in rows}

    def document_statuses(self, document_ids: Iterable[str]) -> dict[str, IngestionStatus]:
        ids = list(set(document_ids))
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        with self._lock:
            rows = self._conn.execute(
                f"SELECT id, status FROM source_documents WHERE id IN ({placeholders})", ids
            ).fetchall()
        return {r["id"]: IngestionStatus(r["status"]) for r in rows}

    def compare_and_set_status(
        self,
        document_id: str,
        expected: IngestionStatus,
        new: IngestionStatus,
        *,
        error_message: str | None = None,
    ) -> None:
        """Atomically move *document_id* from *expected* to *new*.

        Entering COMPLETED clears error_message and stamps last_ingested_at.
        Entering ERROR records *error_message*. Other states leave both as is.

        Raises:
            StaleStatusError: If the row is missing or holds another status.
        """
        now = utc_now()
        if new is IngestionStatus.COMPLETED:
            sql = (
                "UPDATE source_documents SET status = ?, error_message = NULL, "
                "last_ingested_at = ?, updated_at = ? WHERE id = ? AND status = ?"
            )
            params: tuple[object, ...] = (new.value, now, now, document_id, expected.value)
        elif new is IngestionStatus.ERROR:
            sql = (
                "UPDATE source_documents SET status = ?, error_message = ?, "
                "updated_at = ? WHERE id = ? AND status = ?"
            )
            params = (new.value, error_message, now, document_id, expected.value)
        else:
            sql = (
                "UPDATE source_documents SET status = ?, updated_at = ? "
                "WHERE id = ? AND status = ?"
            )
            params = (new.value, now, document_id, expected.value)

        with self._transaction() as conn:
            cur = conn.execute(sql, params)
            if cur.rowcount == 1:
                return
            row = conn.execute(
                "SELECT status FROM source_documents WHERE id = ?", (document_id,)
            ).fetchone()
        raise StaleStatusError(document_id, expected.value, row["status"] if row else None)

    def delete_document(self, document_id: str) -> bool:
        """Delete the document row; chunk rows cascade. Returns True if removed."""
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM source_documents WHERE id = ?", (document_id,))
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def insert_chunks(self, chunks: list[DocumentChunk]) -> None:
        """Insert the structural rows of a forest as one transaction.

        Parents must precede their children in *chunks*.
        """
        now = utc_now()
        with self._transaction() as conn:
            conn.executemany(
                f"""
                INSERT INTO document_chunks ({_CHUNK_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        c.id,
                        c.document_id,
                        c.parent_id,
                        c.title,
                        c.element_type,
                        c.hierarchy_level,
                        c.sequence_in_document,
                        int(c.indexed),
                        c.created_at or now,
                    )
                    for c in chunks
                ],
            )

    def mark_chunks_indexed(self, document_id: str) -> int:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE document_chunks SET indexed = 1 WHERE document_id = ?",
                (document_id,),
            )
        return cur.rowcount

    def get_chunk(self, chunk_id: str) -> DocumentChunk | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM document_chunks WHERE id = ?", (chunk_id,)
            ).fetchone()
        return _row_to_chunk(row) if row else None

    def list_chunks(self, document_id: str) -> list[DocumentChunk]:
        """Return every chunk of *document_id* in depth-first reading order."""
        with self._lock:
            rows = self._conn.execute(
                f"""
                WITH RECURSIVE tree(id, path) AS (
                    SELECT id, printf('%08d', sequence_in_document)
                    FROM document_chunks
                    WHERE document_id = ? AND parent_id IS NULL
                    UNION ALL
                    SELECT c.id, tree.path || '.' || printf('%08d', c.sequence_in_document)
                    FROM document_chunks c JOIN tree ON c.parent_id = tree.id
                )
                SELECT {", ".join("d." + col.strip() for col in _CHUNK_COLUMNS.split(","))}
                FROM tree JOIN document_chunks d ON d.id = tree.id
                ORDER BY tree.path
                """,
                (document_id,),
            ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def children(self, chunk_id: str) -> list[DocumentChunk]:
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {_CHUNK_COLUMNS} FROM document_chunks
                WHERE parent_id = ? ORDER BY sequence_in_document
                """,
                (chunk_id,),
            ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks(self, document_id: str) -> int:
        with self._lock:
            return self._conn.execute(
                "SELECT COUNT(*) FROM document_chunks WHERE document_id = ?", (document_id,)
            ).fetchone()[0]

    def subtree_ids(self, chunk_id: str) -> list[str]:
        """Ids of *chunk_id* and all of its descendants."""
        with self._lock:
            rows = self._conn.execute(
                """
                WITH RECURSIVE subtree(id) AS (
                    SELECT id FROM document_chunks WHERE id = ?
                    UNION ALL
                    SELECT c.id FROM document_chunks c JOIN subtree s ON c.parent_id = s.id
                )
                SELECT id FROM subtree
                """,
                (chunk_id,),
            ).fetchall()
        return [r["id"] for r in rows]

    def delete_subtree(self, chunk_id: str) -> int:
        """Delete *chunk_id* and its descendants. Returns rows removed."""
        ids = self.subtree_ids(chunk_id)
        if not ids:
            return 0
        placeholders = ",".join("?" * len(ids))
        with self._transaction() as conn:
            conn.execute(f"DELETE FROM document_chunks WHERE id IN ({placeholders})", ids)
        return len(ids)

    def delete_chunks_by_document(self, document_id: str) -> int:
        """Delete every chunk row of *document_id*. Returns rows removed.

        Children also go through ON DELETE CASCADE, which ``rowcount`` does
        not report, so the rows are counted before the delete.
        """
        with self._transaction() as conn:
            count = conn.execute(
                "SELECT COUNT(*) FROM document_chunks WHERE document_id = ?", (document_id,)
            ).fetchone()[0]
            conn.execute("DELETE FROM document_chunks WHERE document_id = ?", (document_id,))
        return count


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_document(row: sqlite3.Row) -> SourceDocument:
    return SourceDocument(
        id=row["id"],
        original_filename=row["original_filename"],
        storage_key=row["storage_key"],
        file_type=FileType(row["file_type"]),
        file_size=row["file_size"],
        checksum=row["checksum"],
        status=IngestionStatus(row["status"]),
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        last_ingested_at=row["last_ingested_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> DocumentChunk:
    return DocumentChunk(
        id=row["id"],
        document_id=row["document_id"],
        parent_id=row["parent_id"],
        title=row["title"],
        element_type=row["element_type"],
        hierarchy_level=row["hierarchy_level"],
        sequence_in_document=row["sequence_in_document"],
        indexed=bool(row["indexed"]),
        created_at=row["created_at"],
    )
