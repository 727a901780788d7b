"""Tests for the metadata store: documents, status CAS, chunk forest."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from opencontext.db.models import (
    DocumentChunk,
    DocumentFilter,
    FileType,
    IngestionStatus,
    SourceDocument,
)
from opencontext.errors import StaleStatusError


def _doc(id="doc-1", filename="guide.md", checksum=None, status=IngestionStatus.PENDING, created_at=None):
    return SourceDocument(
        id=id,
        original_filename=filename,
        storage_key=f"ab/{id}.md",
        file_type=FileType.MARKDOWN,
        file_size=42,
        checksum=checksum or f"sha-{id}",
        status=status,
        created_at=created_at,
    )


def _chunk(id, parent_id=None, level=1, seq=1, document_id="doc-1", title=""):
    return DocumentChunk(
        id=id,
        document_id=document_id,
        parent_id=parent_id,
        title=title or id,
        element_type="Title" if parent_id is None else "NarrativeText",
        hierarchy_level=level,
        sequence_in_document=seq,
    )


# ------------------------------------------------------------------
# Documents
# ------------------------------------------------------------------


def test_insert_and_get_document(metadata_store):
    inserted = metadata_store.insert_document(_doc())
    assert inserted.created_at is not None

    result = metadata_store.get_document("doc-1")
    assert result is not None
    assert result.original_filename == "guide.md"
    assert result.status is IngestionStatus.PENDING
    assert result.file_type is FileType.MARKDOWN


def test_get_document_not_found(metadata_store):
    assert metadata_store.get_document("missing") is None


def test_duplicate_checksum_violates_unique_constraint(metadata_store):
    metadata_store.insert_document(_doc(id="a", checksum="same"))
    with pytest.raises(sqlite3.IntegrityError):
        metadata_store.insert_document(_doc(id="b", checksum="same"))
    assert metadata_store.get_document("b") is None


def test_get_document_by_checksum(metadata_store):
    metadata_store.insert_document(_doc(checksum="c0ffee"))
    assert metadata_store.get_document_by_checksum("c0ffee").id == "doc-1"
    assert metadata_store.get_document_by_checksum("other") is None


def test_list_documents_pagination_newest_first(metadata_store):
    for i in range(5):
        metadata_store.insert_document(_doc(id=f"d{i}", created_at=f"2024-01-0{i + 1}T00:00:00.000000+00:00"))

    first = metadata_store.list_documents(DocumentFilter(), page=0, size=2)
    assert first.total_elements == 5
    assert first.total_pages == 3
    assert [d.id for d in first.items] == ["d4", "d3"]
    assert not first.is_last

    last = metadata_store.list_documents(DocumentFilter(), page=2, size=2)
    assert [d.id for d in last.items] == ["d0"]
    assert last.is_last


def test_list_documents_filters_status_and_filename(metadata_store):
    metadata_store.insert_document(_doc(id="a", filename="Report_2024.pdf"))
    metadata_store.insert_document(_doc(id="b", filename="notes.md"))
    metadata_store.compare_and_set_status("b", IngestionStatus.PENDING, IngestionStatus.PARSING)

    by_status = metadata_store.list_documents(DocumentFilter(status=IngestionStatus.PARSING))
    assert [d.id for d in by_status.items] == ["b"]

    by_name = metadata_store.list_documents(DocumentFilter(filename="report"))
    assert [d.id for d in by_name.items] == ["a"]

    # LIKE wildcards in the filter are literal
    assert metadata_store.list_documents(DocumentFilter(filename="%")).total_elements == 0
    assert [d.id for d in metadata_store.list_documents(DocumentFilter(filename="t_2")).items] == ["a"]


def test_list_documents_time_range(metadata_store):
    metadata_store.insert_document(_doc(id="a"))
    now = datetime.now(timezone.utc)

    inside = DocumentFilter(created_from=now - timedelta(minutes=5), created_to=now + timedelta(minutes=5))
    assert metadata_store.list_documents(inside).total_elements == 1

    future = DocumentFilter(created_from=now + timedelta(hours=1))
    assert metadata_store.list_documents(future).total_elements == 0

    # never ingested, so any ingested range excludes it
    ingested = DocumentFilter(ingested_from=now - timedelta(days=1))
    assert metadata_store.list_documents(ingested).total_elements == 0


# ------------------------------------------------------------------
# Status compare-and-set
# ------------------------------------------------------------------


def test_compare_and_set_status_success(metadata_store):
    metadata_store.insert_document(_doc())
    metadata_store.compare_and_set_status("doc-1", IngestionStatus.PENDING, IngestionStatus.PARSING)
    assert metadata_store.get_document("doc-1").status is IngestionStatus.PARSING


def test_compare_and_set_status_stale(metadata_store):
    metadata_store.insert_document(_doc())
    with pytest.raises(StaleStatusError) as exc_info:
        metadata_store.compare_and_set_status(
            "doc-1", IngestionStatus.INDEXING, IngestionStatus.COMPLETED
        )
    assert exc_info.value.actual == "PENDING"
    assert metadata_store.get_document("doc-1").status is IngestionStatus.PENDING


def test_compare_and_set_status_missing_document(metadata_store):
    with pytest.raises(StaleStatusError) as exc_info:
        metadata_store.compare_and_set_status("gone", IngestionStatus.PENDING, IngestionStatus.PARSING)
    assert exc_info.value.actual is None


def test_error_then_completed_clears_message(metadata_store):
    metadata_store.insert_document(_doc())
    metadata_store.compare_and_set_status(
        "doc-1", IngestionStatus.PENDING, IngestionStatus.ERROR, error_message="boom"
    )
    assert metadata_store.get_document("doc-1").error_message == "boom"

    metadata_store.compare_and_set_status("doc-1", IngestionStatus.ERROR, IngestionStatus.PENDING)
    metadata_store.compare_and_set_status("doc-1", IngestionStatus.PENDING, IngestionStatus.INDEXING)
    metadata_store.compare_and_set_status("doc-1", IngestionStatus.INDEXING, IngestionStatus.COMPLETED)
    doc = metadata_store.get_document("doc-1")
    assert doc.error_message is None
    assert doc.last_ingested_at is not None


def test_completed_ids_and_statuses(metadata_store):
    metadata_store.insert_document(_doc(id="a"))
    metadata_store.insert_document(_doc(id="b"))
    metadata_store.compare_and_set_status("a", IngestionStatus.PENDING, IngestionStatus.COMPLETED)

    assert metadata_store.completed_document_ids() == {"a"}
    assert metadata_store.document_statuses(["a", "b", "zzz"]) == {
        "a": IngestionStatus.COMPLETED,
        "b": IngestionStatus.PENDING,
    }
    pending = metadata_store.documents_in_status([IngestionStatus.PENDING])
    assert [d.id for d in pending] == ["b"]


# ------------------------------------------------------------------
# Chunks
# ------------------------------------------------------------------


def _forest(metadata_store):
    metadata_store.insert_document(_doc())
    metadata_store.insert_chunks(
        [
            _chunk("r1", seq=1),
            _chunk("r1-a", parent_id="r1", level=2, seq=1),
            _chunk("r1-a-x", parent_id="r1-a", level=3, seq=1),
            _chunk("r1-b", parent_id="r1", level=2, seq=2),
            _chunk("r2", seq=2),
            _chunk("r2-a", parent_id="r2", level=2, seq=1),
        ]
    )


def test_list_chunks_depth_first_order(metadata_store):
    _forest(metadata_store)
    ids = [c.id for c in metadata_store.list_chunks("doc-1")]
    assert ids == ["r1", "r1-a", "r1-a-x", "r1-b", "r2", "r2-a"]


def test_children_ordered_by_sequence(metadata_store):
    _forest(metadata_store)
    assert [c.id for c in metadata_store.children("r1")] == ["r1-a", "r1-b"]
    assert metadata_store.children("r1-b") == []


def test_sibling_sequence_is_unique(metadata_store):
    _forest(metadata_store)
    with pytest.raises(sqlite3.IntegrityError):
        metadata_store.insert_chunks([_chunk("dup", parent_id="r1", level=2, seq=1)])
    with pytest.raises(sqlite3.IntegrityError):
        metadata_store.insert_chunks([_chunk("dup-root", seq=2)])


def test_insert_chunks_is_atomic(metadata_store):
    metadata_store.insert_document(_doc())
    with pytest.raises(sqlite3.IntegrityError):
        metadata_store.insert_chunks([_chunk("ok"), _chunk("orphan", parent_id="nope", level=2)])
    assert metadata_store.count_chunks("doc-1") == 0


def test_subtree_delete(metadata_store):
    _forest(metadata_store)
    assert set(metadata_store.subtree_ids("r1")) == {"r1", "r1-a", "r1-a-x", "r1-b"}
    assert metadata_store.delete_subtree("r1") == 4
    assert [c.id for c in metadata_store.list_chunks("doc-1")] == ["r2", "r2-a"]


def test_mark_indexed_and_delete_by_document(metadata_store):
    _forest(metadata_store)
    assert metadata_store.mark_chunks_indexed("doc-1") == 6
    assert metadata_store.get_chunk("r2-a").indexed is True

    assert metadata_store.delete_chunks_by_document("doc-1") == 6
    assert metadata_store.count_chunks("doc-1") == 0


def test_delete_document_cascades_chunks(metadata_store):
    _forest(metadata_store)
    assert metadata_store.delete_document("doc-1") is True
    assert metadata_store.count_chunks("doc-1") == 0
    assert metadata_store.delete_document("doc-1") is False
