"""FastAPI dependencies: service lookup and admin authentication."""

from __future__ import annotations

import hmac

from fastapi import Depends, Request

from opencontext.context import AppContext
from opencontext.errors import AuthenticationError
from opencontext.rag.retriever import RetrievalService
from opencontext.service import DocumentService


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_document_service(ctx: AppContext = Depends(get_context)) -> DocumentService:
    return ctx.documents


def get_retrieval_service(ctx: AppContext = Depends(get_context)) -> RetrievalService:
    return ctx.retrieval


def require_api_key(request: Request, ctx: AppContext = Depends(get_context)) -> None:
    """Reject the request unless the admin key header matches.

    With no key configured every admin request is rejected.
    """
    expected: str | None = request.app.state.api_key
    provided = request.headers.get(ctx.config.api.api_key_header)
    if not expected or not provided or not hmac.compare_digest(provided, expected):
        raise AuthenticationError()
