"""PDF extractor: pypdf text extraction with font-size heading detection."""

from __future__ import annotations

import io
from collections import Counter
from dataclasses import dataclass, field

import pypdf

from opencontext.db.models import FileType
from opencontext.ingest.base import HEADER, NARRATIVE_TEXT, TITLE, BaseExtractor, Element

# A line is a heading when its font is at least this much larger than body text.
_HEADING_SIZE_RATIO = 1.15
_MAX_HEADING_CHARS = 200
_MAX_HEADING_LEVELS = 6


@dataclass
class _Line:
    text: str = ""
    sizes: Counter = field(default_factory=Counter)

    @property
    def size(self) -> float:
        return self.sizes.most_common(1)[0][0] if self.sizes else 0.0


class PdfExtractor(BaseExtractor):
    """Extract typed elements from a PDF using pypdf.

    Strategy:
    - Walk every page with ``extract_text(visitor_text=...)`` and record the
      effective font size of each text line.
    - The most common size (weighted by characters) is the body size. Short
      lines set noticeably larger are headings; distinct heading sizes are
      ranked largest-first into levels 1, 2, 3, ...
    - Consecutive body lines form one ``NarrativeText`` paragraph; a heading
      or an empty line ends the paragraph.
    - Pages that yield no text (scanned images, etc.) are silently skipped.
    """

    file_type = FileType.PDF

    def extract(self, data: bytes, filename: str = "") -> list[Element]:
        reader = pypdf.PdfReader(io.BytesIO(data))
        lines: list[_Line] = []
        for page in reader.pages:
            lines.extend(self._page_lines(page))
            lines.append(_Line())  # page break ends a paragraph

        body = self._body_size(lines)
        heading_sizes = sorted(
            {round(ln.size, 1) for ln in lines if self._is_heading(ln, body)}, reverse=True
        )[:_MAX_HEADING_LEVELS]
        level_of = {size: i for i, size in enumerate(heading_sizes, start=1)}

        raw: list[tuple[str, str, int | None]] = []
        paragraph: list[str] = []

        def flush() -> None:
            if paragraph:
                raw.append((NARRATIVE_TEXT, " ".join(paragraph), None))
                paragraph.clear()

        for ln in lines:
            text = ln.text.strip()
            if not text:
                flush()
                continue
            level = level_of.get(round(ln.size, 1)) if self._is_heading(ln, body) else None
            if level is not None:
                flush()
                raw.append((TITLE if level == 1 else HEADER, text, level))
            else:
                paragraph.append(text)
        flush()
        return self._number(raw)

    @staticmethod
    def _page_lines(page: pypdf.PageObject) -> list[_Line]:
        lines: list[_Line] = [_Line()]

        def visitor(text, cm, tm, font_dict, font_size) -> None:
            scale = abs(tm[3] or 1.0) * abs(cm[3] or 1.0)
            size = round(float(font_size or 0.0) * scale, 1)
            parts = text.split("\n")
            for i, part in enumerate(parts):
                if i > 0:
                    lines.append(_Line())
                if part:
                    lines[-1].text += part
                    if part.strip():
                        lines[-1].sizes[size] += len(part.strip())

        page.extract_text(visitor_text=visitor)
        return lines

    @staticmethod
    def _body_size(lines: list[_Line]) -> float:
        totals: Counter = Counter()
        for ln in lines:
            totals.update(ln.sizes)
        return totals.most_common(1)[0][0] if totals else 0.0

    @staticmethod
    def _is_heading(line: _Line, body_size: float) -> bool:
        text = line.text.strip()
        return (
            body_size > 0
            and bool(text)
            and len(text) <= _MAX_HEADING_CHARS
            and line.size >= body_size * _HEADING_SIZE_RATIO
        )
