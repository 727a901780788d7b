"""Structure extractor interface shared by all supported file types."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import PurePath

from opencontext.db.models import FileType
from opencontext.errors import UnsupportedMediaError

# Element types produced by the extractors.
TITLE = "Title"
HEADER = "Header"
NARRATIVE_TEXT = "NarrativeText"
LIST_ITEM = "ListItem"
TABLE = "Table"
CODE_SNIPPET = "CodeSnippet"
UNCATEGORIZED_TEXT = "UncategorizedText"

HEADING_TYPES = frozenset({TITLE, HEADER})


@dataclass(frozen=True)
class Element:
    """One typed element of a document, in reading order.

    Attributes:
        element_type: Structural classification (Title, Header, NarrativeText, ...).
        text: Element text, stripped.
        level: Heading depth for Title/Header (1 = top level); None for content.
        sequence: 1-based position in the document.
    """

    element_type: str
    text: str
    level: int | None
    sequence: int

    @property
    def is_heading(self) -> bool:
        return self.element_type in HEADING_TYPES


class BaseExtractor(ABC):
    """Abstract base for all structure extractors.

    Subclasses implement ``extract()`` and may use ``_decode()`` and
    ``_number()`` to build the element list.
    """

    file_type: FileType

    @abstractmethod
    def extract(self, data: bytes, filename: str = "") -> list[Element]:
        """Turn raw file bytes into an ordered list of typed elements.

        Args:
            data: Full file content.
            filename: Original filename (used for error messages only).

        Returns:
            Elements in reading order with sequential ``sequence`` numbers.
        """

    @staticmethod
    def _decode(data: bytes) -> str:
        """Decode UTF-8 (BOM tolerated); undecodable bytes are replaced."""
        text = data.decode("utf-8-sig", errors="replace")
        return text.replace("\r\n", "\n").replace("\r", "\n")

    @staticmethod
    def _number(raw: list[tuple[str, str, int | None]]) -> list[Element]:
        """Attach 1-based sequence numbers to (type, text, level) triples."""
        kept = [(t, text.strip(), level) for t, text, level in raw if text.strip()]
        return [
            Element(element_type=t, text=text, level=level, sequence=i)
            for i, (t, text, level) in enumerate(kept, start=1)
        ]


# ------------------------------------------------------------------
# File type detection
# ------------------------------------------------------------------

_EXTENSIONS: dict[str, FileType] = {
    ".pdf": FileType.PDF,
    ".md": FileType.MARKDOWN,
    ".markdown": FileType.MARKDOWN,
    ".txt": FileType.TXT,
    ".text": FileType.TXT,
}

_CONTENT_TYPES: dict[str, FileType] = {
    "application/pdf": FileType.PDF,
    "text/markdown": FileType.MARKDOWN,
    "text/x-markdown": FileType.MARKDOWN,
    "text/plain": FileType.TXT,
}


def detect_file_type(filename: str, content_type: str | None = None) -> FileType:
    """Resolve the file type from the extension, then the declared content type.

    Raises:
        UnsupportedMediaError: If neither identifies PDF, Markdown or plain text.
    """
    suffix = PurePath(filename).suffix.lower()
    if suffix in _EXTENSIONS:
        return _EXTENSIONS[suffix]
    if content_type:
        base = content_type.split(";")[0].strip().lower()
        if base in _CONTENT_TYPES:
            return _CONTENT_TYPES[base]
    raise UnsupportedMediaError(
        f"Unsupported file format '{suffix or content_type or filename}'. "
        "Please upload PDF, Markdown or plain text files."
    )


def extension_for(file_type: FileType) -> str:
    return {FileType.PDF: ".pdf", FileType.MARKDOWN: ".md", FileType.TXT: ".txt"}[file_type]
