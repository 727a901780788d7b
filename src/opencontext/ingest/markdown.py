"""Markdown extractor: line-based block parsing into typed elements."""

from __future__ import annotations

import re

from opencontext.db.models import FileType
from opencontext.ingest.base import (
    CODE_SNIPPET,
    HEADER,
    LIST_ITEM,
    NARRATIVE_TEXT,
    TABLE,
    TITLE,
    BaseExtractor,
    Element,
)

_ATX_HEADING_RE = re.compile(r"^ {0,3}(#{1,6})[ \t]+(.*?)(?:[ \t]+#+)?[ \t]*$")
_SETEXT_RE = re.compile(r"^ {0,3}(=+|-+)[ \t]*$")
_FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})")
_LIST_ITEM_RE = re.compile(r"^[ \t]*(?:[-*+]|\d+[.)])[ \t]+")
_TABLE_ROW_RE = re.compile(r"^[ \t]*\|")
_THEMATIC_BREAK_RE = re.compile(r"^ {0,3}([-*_])(?:[ \t]*\1){2,}[ \t]*$")


class MarkdownExtractor(BaseExtractor):
    """Split Markdown into headings, paragraphs, list items, tables and code.

    Strategy:
    - ATX (``#``) and setext (``===`` / ``---``) headings become ``Title``
      (level 1) or ``Header`` (level 2-6).
    - Fenced code blocks are kept whole, fences included, as ``CodeSnippet``.
    - Each list item (with its indented continuation lines) is a ``ListItem``.
    - Consecutive ``|`` rows form one ``Table``.
    - Everything else is grouped into ``NarrativeText`` paragraphs separated
      by blank lines.
    """

    file_type = FileType.MARKDOWN

    def extract(self, data: bytes, filename: str = "") -> list[Element]:
        lines = self._decode(data).split("\n")
        raw: list[tuple[str, str, int | None]] = []
        paragraph: list[str] = []

        def flush() -> None:
            if paragraph:
                raw.append((NARRATIVE_TEXT, "\n".join(paragraph), None))
                paragraph.clear()

        i = 0
        while i < len(lines):
            line = lines[i]

            fence = _FENCE_RE.match(line)
            if fence:
                flush()
                marker = fence.group(1)
                block = [line]
                i += 1
                while i < len(lines):
                    block.append(lines[i])
                    if lines[i].strip().startswith(marker[0] * len(marker)):
                        break
                    i += 1
                raw.append((CODE_SNIPPET, "\n".join(block), None))
                i += 1
                continue

            heading = _ATX_HEADING_RE.match(line)
            if heading:
                flush()
                level = len(heading.group(1))
                raw.append((TITLE if level == 1 else HEADER, heading.group(2), level))
                i += 1
                continue

            # setext underline turns the whole open paragraph into a heading
            setext = _SETEXT_RE.match(line)
            if setext and paragraph:
                level = 1 if setext.group(1).startswith("=") else 2
                text = " ".join(paragraph)
                paragraph.clear()
                raw.append((TITLE if level == 1 else HEADER, text, level))
                i += 1
                continue

            if _THEMATIC_BREAK_RE.match(line):
                flush()
                i += 1
                continue

            if _TABLE_ROW_RE.match(line):
                flush()
                rows = []
                while i < len(lines) and _TABLE_ROW_RE.match(lines[i]):
                    rows.append(lines[i].strip())
                    i += 1
                raw.append((TABLE, "\n".join(rows), None))
                continue

            if _LIST_ITEM_RE.match(line):
                flush()
                item = [_LIST_ITEM_RE.sub("", line, count=1)]
                i += 1
                while (
                    i < len(lines)
                    and lines[i].strip()
                    and lines[i][:1] in (" ", "\t")
                    and not _LIST_ITEM_RE.match(lines[i])
                ):
                    item.append(lines[i].strip())
                    i += 1
                raw.append((LIST_ITEM, " ".join(item), None))
                continue

            if not line.strip():
                flush()
            else:
                paragraph.append(line.strip())
            i += 1

        flush()
        return self._number(raw)
