"""Tests for the chunk index: payload, FTS5 and sqlite-vec channels."""

from __future__ import annotations

import pytest

from conftest import FAKE_DIMS, fake_vector
from opencontext.db.connection import Database
from opencontext.db.index_store import (
    ChunkIndex,
    fts_match_expression,
    model_to_slug,
    vec_table_name,
)
from opencontext.db.models import ChunkContent


def _entry(chunk_id, content, document_id="doc-1", title="Section", embedding="auto"):
    return ChunkContent(
        chunk_id=chunk_id,
        document_id=document_id,
        content=content,
        title=title,
        hierarchy_level=2,
        sequence_in_document=1,
        file_type="MARKDOWN",
        breadcrumbs=["Guide", title],
        embedding=fake_vector(content) if embedding == "auto" else embedding,
    )


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def test_model_to_slug():
    assert model_to_slug("ollama/nomic-embed-text") == "ollama_nomic_embed_text"
    assert vec_table_name("x") == "vec_chunks_x"


@pytest.mark.parametrize(
    "query,expected",
    [
        ("install guide", '"install" OR "guide"'),
        ("what's NOT here?", '"what" OR "s" OR "NOT" OR "here"'),
        ("?!", None),
    ],
)
def test_fts_match_expression(query, expected):
    assert fts_match_expression(query) == expected


# ------------------------------------------------------------------
# Writes
# ------------------------------------------------------------------


def test_write_and_get_content(chunk_index):
    assert chunk_index.write_chunks([_entry("c1", "Install the package with pip")]) == 1

    content = chunk_index.get_content("c1")
    assert content.content == "Install the package with pip"
    assert content.breadcrumbs == ["Guide", "Section"]
    assert content.language == "en"
    assert chunk_index.get_content("missing") is None


def test_vec_table_sized_from_first_vector(chunk_index):
    chunk_index.write_chunks([_entry("c1", "alpha")])
    row = chunk_index._conn.execute(
        "SELECT name FROM sqlite_master WHERE name = ?", (chunk_index.vec_table,)
    ).fetchone()
    assert row is not None
    assert len(fake_vector("alpha")) == FAKE_DIMS


def test_configured_dimensions_create_table_up_front(tmp_path):
    conn = Database(tmp_path / "idx.db", load_vec=True).connect()
    index = ChunkIndex(conn, "other/model", dimensions=8)
    index.initialize()
    assert index._vec_table_exists()
    conn.close()


def test_write_without_embedding_rejected(chunk_index):
    with pytest.raises(ValueError):
        chunk_index.write_chunks([_entry("c1", "text", embedding=None)])
    assert chunk_index.count_by_document("doc-1") == 0


def test_write_is_all_or_nothing(chunk_index):
    chunk_index.write_chunks([_entry("c1", "first")])
    # duplicate chunk_id fails the second row; the first of the batch is rolled back too
    with pytest.raises(Exception):
        chunk_index.write_chunks([_entry("c2", "second"), _entry("c1", "again")])
    assert chunk_index.get_content("c2") is None
    assert chunk_index.count_by_document("doc-1") == 1


def test_delete_by_document_removes_all_channels(chunk_index):
    chunk_index.write_chunks([_entry("a1", "apple pie recipe"), _entry("a2", "apple tart")])
    chunk_index.write_chunks([_entry("b1", "apple juice", document_id="doc-2")])

    assert chunk_index.delete_by_document("doc-1") == 2
    assert chunk_index.count_by_document("doc-1") == 0
    assert chunk_index.get_many(["a1", "a2"]) == {}

    everything = {"doc-1", "doc-2"}
    assert [cid for cid, _ in chunk_index.search_fts("apple", everything)] == ["b1"]
    assert [cid for cid, _ in chunk_index.search_vec(fake_vector("apple"), everything)] == ["b1"]
    fts_rows = chunk_index._conn.execute("SELECT COUNT(*) FROM chunks_fts").fetchone()[0]
    assert fts_rows == 1


# ------------------------------------------------------------------
# Search
# ------------------------------------------------------------------


def test_search_fts_ranks_and_filters(chunk_index):
    chunk_index.write_chunks(
        [
            _entry("c1", "sqlite vector search with sqlite-vec"),
            _entry("c2", "cooking pasta at home"),
        ]
    )
    chunk_index.write_chunks([_entry("c3", "vector databases", document_id="doc-2")])

    hits = chunk_index.search_fts("vector search", {"doc-1"})
    assert [cid for cid, _ in hits] == ["c1"]
    assert chunk_index.search_fts("vector", set()) == []
    assert chunk_index.search_fts("...", {"doc-1"}) == []


def test_search_fts_matches_title(chunk_index):
    chunk_index.write_chunks([_entry("c1", "body text only", title="Installation")])
    assert [cid for cid, _ in chunk_index.search_fts("installation", {"doc-1"})] == ["c1"]


def test_search_vec_nearest_first(chunk_index):
    chunk_index.write_chunks(
        [
            _entry("near", "solar panel installation guide"),
            _entry("far", "medieval poetry anthology"),
        ]
    )
    hits = chunk_index.search_vec(fake_vector("solar panel installation"), {"doc-1"}, limit=2)
    assert hits[0][0] == "near"
    assert hits[0][1] <= hits[1][1]


def test_search_vec_without_table_or_documents(chunk_index):
    assert chunk_index.search_vec(fake_vector("x"), {"doc-1"}) == []
    chunk_index.write_chunks([_entry("c1", "x")])
    assert chunk_index.search_vec(fake_vector("x"), set()) == []
