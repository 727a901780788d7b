"""Tests for PlainTextExtractor."""

from __future__ import annotations

from opencontext.ingest.base import NARRATIVE_TEXT
from opencontext.ingest.plaintext import PlainTextExtractor


def test_paragraphs_split_on_blank_lines():
    data = b"First paragraph\nstill first.\n\n\nSecond.\n   \nThird."
    elements = PlainTextExtractor().extract(data, "notes.txt")
    assert [e.text for e in elements] == ["First paragraph\nstill first.", "Second.", "Third."]
    assert all(e.element_type == NARRATIVE_TEXT for e in elements)
    assert all(not e.is_heading for e in elements)
    assert [e.sequence for e in elements] == [1, 2, 3]


def test_empty_file_yields_nothing():
    assert PlainTextExtractor().extract(b"  \n\n ", "empty.txt") == []


def test_invalid_utf8_replaced():
    elements = PlainTextExtractor().extract(b"caf\xe9 au lait", "latin.txt")
    assert elements[0].text.startswith("caf")
    assert "\ufffd" in elements[0].text
