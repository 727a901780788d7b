"""Request/response schemas for the HTTP API.

JSON field names are camelCase; Python attributes stay snake_case.

Dependencies: pydantic
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from opencontext.db.models import Page, SourceDocument
from opencontext.rag.content import ContentResult
from opencontext.rag.retriever import SearchResult

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CommonResponse(CamelModel, Generic[T]):
    """Envelope wrapping every response body."""

    success: bool
    data: T | None = None
    message: str | None = None
    error_code: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def ok(data: Any = None, message: str | None = None) -> CommonResponse:
    return CommonResponse(success=True, data=data, message=message)


def failure(error_code: str, message: str, data: Any = None) -> dict[str, Any]:
    """Serialised error envelope, ready for a JSONResponse."""
    return CommonResponse(
        success=False, data=data, message=message, error_code=error_code
    ).model_dump(mode="json", by_alias=True)


# ------------------------------------------------------------------
# Sources
# ------------------------------------------------------------------


class SourceDocumentDto(CamelModel):
    id: str
    original_filename: str
    file_type: str
    file_size: int
    status: str
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_ingested_at: datetime | None = None

    @classmethod
    def from_domain(cls, doc: SourceDocument) -> SourceDocumentDto:
        return cls(
            id=doc.id,
            original_filename=doc.original_filename,
            file_type=doc.file_type.value,
            file_size=doc.file_size,
            status=doc.status.value,
            error_message=doc.error_message,
            created_at=doc.created_at,
            updated_at=doc.updated_at,
            last_ingested_at=doc.last_ingested_at,
        )


class UploadResponse(CamelModel):
    id: str
    original_filename: str
    status: str


class PageResponse(CamelModel, Generic[T]):
    content: list[T]
    page: int
    size: int
    total_elements: int
    total_pages: int
    last: bool

    @classmethod
    def from_page(cls, page: Page) -> PageResponse[SourceDocumentDto]:
        return PageResponse[SourceDocumentDto](
            content=[SourceDocumentDto.from_domain(d) for d in page.items],
            page=page.page,
            size=page.size,
            total_elements=page.total_elements,
            total_pages=page.total_pages,
            last=page.is_last,
        )


# ------------------------------------------------------------------
# Retrieval
# ------------------------------------------------------------------


class SearchRequest(CamelModel):
    query: str = Field(description="Free-text search query")
    top_k: int | None = Field(default=None, description="Maximum results (default 5)")


class SearchResultDto(CamelModel):
    chunk_id: str
    title: str
    snippet: str
    relevance_score: float
    breadcrumbs: list[str]

    @classmethod
    def from_domain(cls, result: SearchResult) -> SearchResultDto:
        return cls(
            chunk_id=result.chunk_id,
            title=result.title,
            snippet=result.snippet,
            relevance_score=result.relevance_score,
            breadcrumbs=result.breadcrumbs,
        )


class SearchResponse(CamelModel):
    results: list[SearchResultDto]


class GetContentRequest(CamelModel):
    chunk_id: str = Field(description="Chunk id returned by search")
    max_tokens: int | None = Field(default=None, description="Token budget (default 25000)")


class TokenInfoDto(CamelModel):
    tokenizer: str
    actual_tokens: int


class GetContentResponse(CamelModel):
    content: str
    token_info: TokenInfoDto
    truncated: bool

    @classmethod
    def from_domain(cls, result: ContentResult) -> GetContentResponse:
        return cls(
            content=result.content,
            token_info=TokenInfoDto(
                tokenizer=result.token_info.tokenizer,
                actual_tokens=result.token_info.actual_tokens,
            ),
            truncated=result.truncated,
        )
