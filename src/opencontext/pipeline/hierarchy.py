"""Chunk hierarchy builder: ordered elements → forest of chunks.

Classification:
- ``Title`` and ``Header`` elements are headings. Their nominal level comes
  from the element (Title defaults to 1, Header to 2).
- Every other element type is content.

Walking the elements keeps a stack of open heading chunks. A heading of
nominal level L pops every open chunk with nominal level >= L and opens a new
chunk under whatever is left on top (or as a root). The stored
``hierarchy_level`` is always parent level + 1, so a jump from level 1 to
level 3 produces a direct child; no intermediate chunks are synthesised.

Content goes under the deepest open heading: as its own leaf chunk(s) with
granularity ``leaf``, or appended to that heading's text with ``merge``.
Content met while nothing is open (a preamble) opens a synthetic root titled
with the filename stem and counting as a level-1 heading. A document with no
headings at all becomes exactly one root chunk holding all of its content.

Leaf chunks carry their section's title; breadcrumbs list the heading titles
from the root down to the chunk's section.
"""

from __future__ import annotations

import re
import uuid
from collections import defaultdict
from dataclasses import dataclass
from pathlib import PurePath

from opencontext.db.models import ChunkContent, DocumentChunk
from opencontext.ingest.base import HEADER, TITLE, Element

GRANULARITY_LEAF = "leaf"
GRANULARITY_MERGE = "merge"
DOCUMENT_ROOT = "DocumentRoot"

_HANGUL_RE = re.compile(r"[ᄀ-ᇿ㄰-㆏가-힣]")
_DEFAULT_LEVEL = {TITLE: 1, HEADER: 2}


class HierarchyError(ValueError):
    """The built forest violates a structural invariant."""


@dataclass
class ChunkNode:
    """A chunk under construction: structural row plus its text payload."""

    chunk: DocumentChunk
    content: str
    breadcrumbs: list[str]
    nominal_level: int

    @property
    def language(self) -> str:
        return detect_language(self.content)

    def to_content(self, file_type: str, embedding: list[float] | None = None) -> ChunkContent:
        return ChunkContent(
            chunk_id=self.chunk.id,
            document_id=self.chunk.document_id,
            content=self.content,
            title=self.chunk.title,
            breadcrumbs=list(self.breadcrumbs),
            hierarchy_level=self.chunk.hierarchy_level,
            sequence_in_document=self.chunk.sequence_in_document,
            language=self.language,
            file_type=file_type,
            embedding=embedding,
        )


def detect_language(text: str) -> str:
    return "ko" if _HANGUL_RE.search(text) else "en"


_WHITESPACE = (" ", "\n", "\t")


def _last_whitespace(text: str, lo: int, hi: int) -> int:
    return max(text.rfind(c, lo, hi) for c in _WHITESPACE)


def _first_whitespace(text: str, lo: int, hi: int) -> int:
    hits = [p for p in (text.find(c, lo, hi) for c in _WHITESPACE) if p != -1]
    return min(hits, default=-1)


def split_text(text: str, max_chars: int = 1000, overlap: int = 200) -> list[str]:
    """Split *text* into pieces of at most *max_chars*, breaking on whitespace.

    Consecutive pieces share roughly *overlap* characters, starting on a word
    boundary. A single word longer than *max_chars* is cut mid-word.
    """
    text = text.strip()
    if len(text) <= max_chars:
        return [text] if text else []

    pieces: list[str] = []
    start = 0
    length = len(text)
    while start < length:
        end = min(start + max_chars, length)
        if end < length:
            space = _last_whitespace(text, start + 1, end)
            if space > start:
                end = space
        piece = text[start:end].strip()
        if piece:
            pieces.append(piece)
        if end >= length:
            break
        next_start = end - overlap
        if next_start <= start:
            next_start = end
        else:
            boundary = _first_whitespace(text, next_start, end)
            if boundary != -1:
                next_start = boundary + 1
        start = next_start
    return pieces


class HierarchyBuilder:
    """Build the chunk forest of one document.

    Args:
        granularity: ``leaf`` or ``merge``.
        max_chunk_chars: Leaf content above this length is split.
        chunk_overlap: Characters shared between split pieces.
    """

    def __init__(
        self,
        granularity: str = GRANULARITY_LEAF,
        max_chunk_chars: int = 1000,
        chunk_overlap: int = 200,
    ) -> None:
        if granularity not in (GRANULARITY_LEAF, GRANULARITY_MERGE):
            raise ValueError(f"Unknown granularity '{granularity}'")
        self.granularity = granularity
        self.max_chunk_chars = max_chunk_chars
        self.chunk_overlap = chunk_overlap

    def build(self, document_id: str, elements: list[Element], filename: str = "") -> list[ChunkNode]:
        """Return the forest as a flat list, parents before children, in reading order."""
        self._document_id = document_id
        self._stem = PurePath(filename).stem or "Untitled"
        self._nodes: list[ChunkNode] = []
        self._counters: dict[str | None, int] = defaultdict(int)

        content = [e for e in elements if e.text.strip()]
        if not content:
            return []

        if not any(e.is_heading for e in content):
            root = self._open(None, self._stem, DOCUMENT_ROOT, nominal_level=1)
            root.content = "\n\n".join(e.text for e in content)
            return self._nodes

        stack: list[ChunkNode] = []
        for element in content:
            if element.is_heading:
                level = element.level or _DEFAULT_LEVEL.get(element.element_type, 2)
                while stack and stack[-1].nominal_level >= level:
                    stack.pop()
                parent = stack[-1] if stack else None
                node = self._open(parent, element.text, element.element_type, nominal_level=level)
                node.content = element.text
                stack.append(node)
                continue

            if not stack:
                preamble = self._open(None, self._stem, DOCUMENT_ROOT, nominal_level=1)
                preamble.content = self._stem
                stack.append(preamble)
            self._add_content(stack[-1], element)

        return self._nodes

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _open(
        self, parent: ChunkNode | None, title: str, element_type: str, nominal_level: int
    ) -> ChunkNode:
        parent_id = parent.chunk.id if parent else None
        self._counters[parent_id] += 1
        node = ChunkNode(
            chunk=DocumentChunk(
                id=str(uuid.uuid4()),
                document_id=self._document_id,
                parent_id=parent_id,
                title=title,
                element_type=element_type,
                hierarchy_level=parent.chunk.hierarchy_level + 1 if parent else 1,
                sequence_in_document=self._counters[parent_id],
            ),
            content="",
            breadcrumbs=[*(parent.breadcrumbs if parent else []), title],
            nominal_level=nominal_level,
        )
        self._nodes.append(node)
        return node

    def _add_content(self, section: ChunkNode, element: Element) -> None:
        if self.granularity == GRANULARITY_MERGE:
            section.content = "\n\n".join(p for p in (section.content, element.text) if p)
            return
        for piece in split_text(element.text, self.max_chunk_chars, self.chunk_overlap):
            parent_id = section.chunk.id
            self._counters[parent_id] += 1
            self._nodes.append(
                ChunkNode(
                    chunk=DocumentChunk(
                        id=str(uuid.uuid4()),
                        document_id=self._document_id,
                        parent_id=parent_id,
                        title=section.chunk.title,
                        element_type=element.element_type,
                        hierarchy_level=section.chunk.hierarchy_level + 1,
                        sequence_in_document=self._counters[parent_id],
                    ),
                    content=piece,
                    breadcrumbs=list(section.breadcrumbs),
                    nominal_level=section.nominal_level + 1,
                )
            )


def validate_forest(nodes: list[ChunkNode]) -> None:
    """Check the structural invariants of a built forest.

    - every parent exists, belongs to the same document and precedes its children
    - roots are level 1; children are exactly one level below their parent
    - siblings are numbered 1..n in reading order

    Raises:
        HierarchyError: On the first violation found.
    """
    by_id: dict[str, DocumentChunk] = {}
    last_seq: dict[tuple[str, str | None], int] = {}
    for node in nodes:
        chunk = node.chunk
        if chunk.id in by_id:
            raise HierarchyError(f"duplicate chunk id {chunk.id}")
        if chunk.parent_id is None:
            expected_level = 1
        else:
            parent = by_id.get(chunk.parent_id)
            if parent is None:
                raise HierarchyError(f"chunk {chunk.id} references unknown parent {chunk.parent_id}")
            if parent.document_id != chunk.document_id:
                raise HierarchyError(f"chunk {chunk.id} and its parent belong to different documents")
            expected_level = parent.hierarchy_level + 1
        if chunk.hierarchy_level != expected_level:
            raise HierarchyError(
                f"chunk {chunk.id} has level {chunk.hierarchy_level}, expected {expected_level}"
            )
        key = (chunk.document_id, chunk.parent_id)
        if chunk.sequence_in_document != last_seq.get(key, 0) + 1:
            raise HierarchyError(
                f"chunk {chunk.id} has sequence {chunk.sequence_in_document}, "
                f"expected {last_seq.get(key, 0) + 1}"
            )
        last_seq[key] = chunk.sequence_in_document
        by_id[chunk.id] = chunk
