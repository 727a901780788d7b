"""Tests for file type detection."""

from __future__ import annotations

import pytest

from opencontext.db.models import FileType
from opencontext.errors import UnsupportedMediaError
from opencontext.ingest.base import detect_file_type, extension_for


@pytest.mark.parametrize(
    "filename,content_type,expected",
    [
        ("report.PDF", None, FileType.PDF),
        ("readme.md", None, FileType.MARKDOWN),
        ("notes.markdown", "application/octet-stream", FileType.MARKDOWN),
        ("notes.txt", None, FileType.TXT),
        ("upload", "text/plain; charset=utf-8", FileType.TXT),
        ("blob", "application/pdf", FileType.PDF),
    ],
)
def test_detect_file_type(filename, content_type, expected):
    assert detect_file_type(filename, content_type) is expected


@pytest.mark.parametrize("filename,content_type", [("slides.pptx", None), ("image.png", "image/png")])
def test_unsupported_types_rejected(filename, content_type):
    with pytest.raises(UnsupportedMediaError) as exc_info:
        detect_file_type(filename, content_type)
    assert exc_info.value.code == "DOC_005"


def test_extension_for():
    assert extension_for(FileType.PDF) == ".pdf"
    assert extension_for(FileType.MARKDOWN) == ".md"
    assert extension_for(FileType.TXT) == ".txt"
