"""Domain models for the OpenContext storage layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class IngestionStatus(str, Enum):
    PENDING = "PENDING"
    PARSING = "PARSING"
    CHUNKING = "CHUNKING"
    EMBEDDING = "EMBEDDING"
    INDEXING = "INDEXING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"
    DELETING = "DELETING"

    @property
    def in_pipeline(self) -> bool:
        """True while an orchestrator run owns the document."""
        return self in _PIPELINE_STATES


_PIPELINE_STATES = frozenset(
    {
        IngestionStatus.PARSING,
        IngestionStatus.CHUNKING,
        IngestionStatus.EMBEDDING,
        IngestionStatus.INDEXING,
    }
)


class FileType(str, Enum):
    PDF = "PDF"
    MARKDOWN = "MARKDOWN"
    TXT = "TXT"


def utc_now() -> str:
    """Timestamp format used by every table; sorts lexicographically."""
    return format_ts(datetime.now(timezone.utc))


def format_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


@dataclass
class SourceDocument:
    id: str
    original_filename: str
    storage_key: str
    file_type: FileType
    file_size: int
    checksum: str
    status: IngestionStatus = IngestionStatus.PENDING
    error_message: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_ingested_at: str | None = None


@dataclass
class DocumentChunk:
    """Structural row of the chunk forest. Holds no text beyond the title."""

    id: str
    document_id: str
    parent_id: str | None
    title: str
    element_type: str
    hierarchy_level: int
    sequence_in_document: int
    created_at: str | None = None
    indexed: bool = False

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


@dataclass
class ChunkContent:
    """Searchable payload of one chunk, owned by the chunk index."""

    chunk_id: str
    document_id: str
    content: str
    title: str
    hierarchy_level: int
    sequence_in_document: int
    file_type: str
    breadcrumbs: list[str] = field(default_factory=list)
    language: str = "en"
    embedding: list[float] | None = None

    @property
    def breadcrumbs_json(self) -> str:
        return json.dumps(self.breadcrumbs, ensure_ascii=False)


@dataclass
class DocumentFilter:
    """Filters for paginated document listing. Time bounds are inclusive."""

    status: IngestionStatus | None = None
    filename: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    ingested_from: datetime | None = None
    ingested_to: datetime | None = None


@dataclass
class Page:
    items: list[SourceDocument]
    page: int
    size: int
    total_elements: int

    @property
    def total_pages(self) -> int:
        return (self.total_elements + self.size - 1) // self.size if self.size else 0

    @property
    def is_last(self) -> bool:
        return self.page + 1 >= self.total_pages
