"""Tests for explore: hybrid search, RRF fusion, visibility rules."""

from __future__ import annotations

import pytest

from opencontext.db.models import IngestionStatus
from opencontext.errors import InfrastructureError, ValidationError
from opencontext.rag.retriever import _rrf_fuse, make_snippet

SOLAR_MD = (
    b"# Solar Energy\n\n"
    b"Solar panels convert sunlight into electricity for the home.\n\n"
    b"## Batteries\n\n"
    b"Lithium batteries store solar electricity for use at night.\n"
)

GARDEN_MD = (
    b"# Gardening\n\n"
    b"Tomatoes need full sun and regular watering in summer.\n"
)


# ------------------------------------------------------------------
# RRF fusion
# ------------------------------------------------------------------


def test_rrf_fuse_combines_both_channels():
    dense = [("a", 0.1), ("b", 0.2)]
    bm25 = [("b", -3.0), ("c", -1.0)]

    fused = _rrf_fuse(dense, bm25, top_k=10, k=60)

    assert [s.chunk_id for s in fused] == ["b", "a", "c"]
    b = fused[0]
    assert b.rrf_score == pytest.approx(1 / 62 + 1 / 61)
    assert (b.dense_rank, b.bm25_rank) == (2, 1)
    # missing from bm25: ranked past that channel's last hit plus k
    a = fused[1]
    assert a.rrf_score == pytest.approx(1 / 61 + 1 / (60 + 2 + 60))
    assert a.bm25_rank is None


def test_rrf_fuse_ties_broken_by_id_and_truncated():
    fused = _rrf_fuse([("y", 0.0)], [("x", 0.0)], top_k=1)
    assert [s.chunk_id for s in fused] == ["x"]
    assert _rrf_fuse([], [], top_k=5) == []


def test_make_snippet():
    assert make_snippet("short\n\ntext") == "short text"
    long = "word " * 30
    snippet = make_snippet(long, max_length=20)
    assert snippet.endswith("...")
    assert len(snippet) == 23


# ------------------------------------------------------------------
# explore
# ------------------------------------------------------------------


def test_explore_finds_relevant_chunk(context, ingest):
    ingest("solar.md", SOLAR_MD)
    ingest("garden.md", GARDEN_MD)

    results = context.retrieval.explore("lithium batteries night", top_k=3)

    assert results
    top = results[0]
    assert top.title == "Batteries"
    assert top.breadcrumbs == ["Solar Energy", "Batteries"]
    assert top.relevance_score == pytest.approx(1.0)
    assert len(top.snippet) <= 53
    scores = [r.relevance_score for r in results]
    assert scores == sorted(scores, reverse=True)
    assert len(results) <= 3


def test_explore_never_returns_full_text(context, ingest):
    ingest("solar.md", SOLAR_MD)
    for result in context.retrieval.explore("solar panels sunlight"):
        full = context.index.get_content(result.chunk_id).content
        if len(full) > 50:
            assert result.snippet != full


def test_explore_only_sees_completed_documents(context, ingest):
    solar = ingest("solar.md", SOLAR_MD)
    ingest("garden.md", GARDEN_MD)
    context.metadata.compare_and_set_status(
        solar.id, IngestionStatus.COMPLETED, IngestionStatus.DELETING
    )

    results = context.retrieval.explore("solar batteries electricity", top_k=10)
    solar_chunks = {c.id for c in context.metadata.list_chunks(solar.id)}
    assert not solar_chunks & {r.chunk_id for r in results}


def test_explore_without_documents_is_empty(context, embedder):
    assert context.retrieval.explore("anything") == []
    # no completed document, no embedding call
    assert embedder.calls == 0


@pytest.mark.parametrize(
    "query,top_k",
    [("", 5), ("   ", 5), ("solar", 0), ("solar", 51)],
)
def test_explore_validation(context, query, top_k):
    with pytest.raises(ValidationError):
        context.retrieval.explore(query, top_k=top_k)


def test_explore_embedding_outage(context, ingest, embedder):
    ingest("solar.md", SOLAR_MD)
    embedder.fail_times = 1
    with pytest.raises(InfrastructureError):
        context.retrieval.explore("solar")
