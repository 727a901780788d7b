"""Plain text extractor: blank-line separated paragraphs."""

from __future__ import annotations

import re

from opencontext.db.models import FileType
from opencontext.ingest.base import NARRATIVE_TEXT, BaseExtractor, Element

_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")


class PlainTextExtractor(BaseExtractor):
    """Every paragraph becomes a ``NarrativeText`` element; no headings."""

    file_type = FileType.TXT

    def extract(self, data: bytes, filename: str = "") -> list[Element]:
        text = self._decode(data)
        return self._number(
            [(NARRATIVE_TEXT, p, None) for p in _PARAGRAPH_BREAK_RE.split(text)]
        )
