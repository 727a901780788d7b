"""Chunk index: chunk text, FTS5 keyword search and sqlite-vec KNN search.

Each chunk's payload row, FTS5 row and vector share one integer rowid so the
three can be joined and deleted together. The vec table is per embedding
model (vec_chunks_{slug}) and created on first write, sized to the vectors
being written unless dimensions are configured up front.
"""

from __future__ import annotations

import json
import re
import sqlite3
import threading
from collections.abc import Iterable

from loguru import logger

from opencontext.db.migrations import INDEX_MIGRATIONS, run_migrations
from opencontext.db.models import ChunkContent

_CONTENT_COLUMNS = (
    "rowid, chunk_id, document_id, content, title, breadcrumbs, hierarchy_level, "
    "sequence_in_document, language, file_type"
)


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "ollama/nomic-embed-text" -> "ollama_nomic_embed_text"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    return f"vec_chunks_{model_slug}"


def fts_match_expression(query: str) -> str | None:
    """Turn free text into an FTS5 OR-query of quoted terms.

    FTS5 MATCH rejects punctuation and treats AND/OR/NOT as operators, so every
    word is quoted. Returns None when nothing searchable remains.
    """
    terms = re.findall(r"\w+", query)
    if not terms:
        return None
    return " OR ".join(f'"{t}"' for t in terms)


class ChunkIndex:
    """Searchable store of chunk payloads.

    Args:
        conn: Open connection with sqlite-vec loaded.
        embedding_model: Model whose vectors this index holds.
        dimensions: Vector size; 0 means taken from the first vector written.
    """

    def __init__(self, conn: sqlite3.Connection, embedding_model: str, dimensions: int = 0) -> None:
        self._conn = conn
        self._lock = threading.RLock()
        self._slug = model_to_slug(embedding_model)
        self._dimensions = dimensions
        self.vec_table = vec_table_name(self._slug)

    def initialize(self) -> None:
        with self._lock:
            run_migrations(self._conn, INDEX_MIGRATIONS)
            if self._dimensions > 0:
                self._ensure_vec_table(self._dimensions)

    def _vec_table_exists(self) -> bool:
        row = self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (self.vec_table,)
        ).fetchone()
        return row is not None

    def _ensure_vec_table(self, dimensions: int) -> None:
        if dimensions < 1:
            raise ValueError(f"dimensions must be >= 1, got {dimensions}")
        if not self._vec_table_exists():
            self._conn.execute(
                f"CREATE VIRTUAL TABLE {self.vec_table} USING vec0(embedding float[{dimensions}])"
            )
            self._conn.commit()
            logger.info(f"Created vector table {self.vec_table} | dimensions={dimensions}")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write_chunks(self, entries: list[ChunkContent]) -> int:
        """Write payload, FTS row and vector for every entry as one transaction.

        Either every entry becomes searchable or none does.

        Raises:
            ValueError: If an entry has no embedding.
        """
        if not entries:
            return 0
        if any(e.embedding is None for e in entries):
            raise ValueError("every chunk needs an embedding before indexing")

        with self._lock:
            self._ensure_vec_table(len(entries[0].embedding or []))
            try:
                for entry in entries:
                    cur = self._conn.execute(
                        """
                        INSERT INTO chunk_contents (
                            chunk_id, document_id, content, title, breadcrumbs,
                            hierarchy_level, sequence_in_document, language, file_type
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            entry.chunk_id,
                            entry.document_id,
                            entry.content,
                            entry.title,
                            entry.breadcrumbs_json,
                            entry.hierarchy_level,
                            entry.sequence_in_document,
                            entry.language,
                            entry.file_type,
                        ),
                    )
                    rowid = cur.lastrowid
                    # FTS and vec rows share the payload rowid
                    self._conn.execute(
                        "INSERT INTO chunks_fts(rowid, content) VALUES (?, ?)",
                        (rowid, f"{entry.title}\n{entry.content}"),
                    )
                    self._conn.execute(
                        f"INSERT INTO {self.vec_table}(rowid, embedding) VALUES (?, ?)",
                        (rowid, json.dumps(entry.embedding)),
                    )
                self._conn.commit()
            except BaseException:
                self._conn.rollback()
                raise
        return len(entries)

    def delete_by_document(self, document_id: str) -> int:
        """Remove every entry of *document_id* from all three tables.

        Returns the number of payload rows deleted.
        """
        with self._lock:
            try:
                rowids = [
                    r[0]
                    for r in self._conn.execute(
                        "SELECT rowid FROM chunk_contents WHERE document_id = ?", (document_id,)
                    ).fetchall()
                ]
                if rowids:
                    placeholders = ",".join("?" * len(rowids))
                    self._conn.execute(
                        f"DELETE FROM chunks_fts WHERE rowid IN ({placeholders})", rowids
                    )
                    if self._vec_table_exists():
                        self._conn.execute(
                            f"DELETE FROM {self.vec_table} WHERE rowid IN ({placeholders})",
                            rowids,
                        )
                    self._conn.execute(
                        "DELETE FROM chunk_contents WHERE document_id = ?", (document_id,)
                    )
                self._conn.commit()
            except BaseException:
                self._conn.rollback()
                raise
        return len(rowids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def count_by_document(self, document_id: str) -> int:
        with self._lock:
            return self._conn.execute(
                "SELECT COUNT(*) FROM chunk_contents WHERE document_id = ?", (document_id,)
            ).fetchone()[0]

    def get_content(self, chunk_id: str) -> ChunkContent | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_CONTENT_COLUMNS} FROM chunk_contents WHERE chunk_id = ?",
                (chunk_id,),
            ).fetchone()
        return _row_to_content(row) if row else None

    def get_many(self, chunk_ids: Iterable[str]) -> dict[str, ChunkContent]:
        ids = list(chunk_ids)
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_CONTENT_COLUMNS} FROM chunk_contents WHERE chunk_id IN ({placeholders})",
                ids,
            ).fetchall()
        return {r["chunk_id"]: _row_to_content(r) for r in rows}

    def search_fts(
        self, query: str, document_ids: set[str], limit: int = 10
    ) -> list[tuple[str, float]]:
        """BM25 keyword search restricted to *document_ids*.

        Returns (chunk_id, bm25) best-first; bm25() is negative and lower is better.
        """
        expression = fts_match_expression(query)
        if expression is None or not document_ids:
            return []
        ids = sorted(document_ids)
        placeholders = ",".join("?" * len(ids))
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT c.chunk_id, bm25(chunks_fts) AS score
                FROM chunks_fts JOIN chunk_contents c ON c.rowid = chunks_fts.rowid
                WHERE chunks_fts MATCH ? AND c.document_id IN ({placeholders})
                ORDER BY score LIMIT ?
                """,
                [expression, *ids, limit],
            ).fetchall()
        return [(r["chunk_id"], r["score"]) for r in rows]

    def search_vec(
        self,
        embedding: list[float],
        document_ids: set[str],
        limit: int = 10,
        candidate_pool: int = 50,
    ) -> list[tuple[str, float]]:
        """Nearest-neighbour search restricted to *document_ids*.

        vec0 cannot filter on payload columns, so the KNN query over-fetches
        max(limit, candidate_pool) neighbours and filters afterwards.
        Returns (chunk_id, distance) nearest-first.
        """
        if not document_ids:
            return []
        with self._lock:
            if not self._vec_table_exists():
                return []
            rows = self._conn.execute(
                f"""
                SELECT v.distance AS distance, c.chunk_id, c.document_id
                FROM (
                    SELECT rowid AS vec_rowid, distance FROM {self.vec_table}
                    WHERE embedding MATCH ? AND k = ?
                ) v JOIN chunk_contents c ON c.rowid = v.vec_rowid
                ORDER BY v.distance
                """,
                (json.dumps(embedding), max(limit, candidate_pool)),
            ).fetchall()
        hits = [(r["chunk_id"], r["distance"]) for r in rows if r["document_id"] in document_ids]
        return hits[:limit]


def _row_to_content(row: sqlite3.Row) -> ChunkContent:
    return ChunkContent(
        chunk_id=row["chunk_id"],
        document_id=row["document_id"],
        content=row["content"],
        title=row["title"],
        breadcrumbs=json.loads(row["breadcrumbs"]),
        hierarchy_level=row["hierarchy_level"],
        sequence_in_document=row["sequence_in_document"],
        language=row["language"],
        file_type=row["file_type"],
    )
