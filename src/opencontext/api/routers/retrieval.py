"""Two-phase retrieval endpoints (unauthenticated).

Routes: POST /search, POST /get-content
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from opencontext.api.deps import get_retrieval_service
from opencontext.api.schemas import (
    CommonResponse,
    GetContentRequest,
    GetContentResponse,
    SearchRequest,
    SearchResponse,
    SearchResultDto,
    ok,
)
from opencontext.rag.retriever import RetrievalService

router = APIRouter(tags=["retrieval"])


@router.post("/search", response_model=CommonResponse[SearchResponse])
def search(request: SearchRequest, service: RetrievalService = Depends(get_retrieval_service)):
    results = service.explore(request.query, request.top_k)
    return ok(SearchResponse(results=[SearchResultDto.from_domain(r) for r in results]))


@router.post("/get-content", response_model=CommonResponse[GetContentResponse])
def get_content(
    request: GetContentRequest, service: RetrievalService = Depends(get_retrieval_service)
):
    result = service.focus(request.chunk_id, request.max_tokens)
    return ok(GetContentResponse.from_domain(result))
