"""Document administration endpoints (require the admin API key).

Routes: POST /sources/upload, GET /sources, GET /sources/{id},
        DELETE /sources/{id}, POST /sources/{id}/resync
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, File, Query, UploadFile, status

from opencontext.api.deps import get_document_service, require_api_key
from opencontext.api.schemas import (
    CommonResponse,
    PageResponse,
    SourceDocumentDto,
    UploadResponse,
    ok,
)
from opencontext.db.models import DocumentFilter, IngestionStatus
from opencontext.service import DocumentService

router = APIRouter(
    prefix="/sources",
    tags=["sources"],
    dependencies=[Depends(require_api_key)],
)


@router.post(
    "/upload",
    response_model=CommonResponse[UploadResponse],
    status_code=status.HTTP_201_CREATED,
)
def upload_source(
    file: UploadFile = File(...),
    service: DocumentService = Depends(get_document_service),
):
    data = service.read_upload(file.file)
    doc = service.upload(file.filename or "", data, file.content_type)
    return ok(
        UploadResponse(id=doc.id, original_filename=doc.original_filename, status=doc.status.value),
        message="File uploaded; ingestion queued.",
    )


@router.get("", response_model=CommonResponse[PageResponse[SourceDocumentDto]])
def list_sources(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    status_filter: IngestionStatus | None = Query(None, alias="status"),
    filename: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    ingested_from: datetime | None = None,
    ingested_to: datetime | None = None,
    service: DocumentService = Depends(get_document_service),
):
    filters = DocumentFilter(
        status=status_filter,
        filename=filename,
        created_from=created_from,
        created_to=created_to,
        ingested_from=ingested_from,
        ingested_to=ingested_to,
    )
    return ok(PageResponse.from_page(service.list_documents(filters, page=page, size=size)))


@router.get("/{document_id}", response_model=CommonResponse[SourceDocumentDto])
def get_source(document_id: str, service: DocumentService = Depends(get_document_service)):
    return ok(SourceDocumentDto.from_domain(service.get(document_id)))


@router.delete(
    "/{document_id}",
    response_model=CommonResponse[None],
    status_code=status.HTTP_202_ACCEPTED,
)
def delete_source(document_id: str, service: DocumentService = Depends(get_document_service)):
    service.delete(document_id)
    return ok(message="Deletion accepted.")


@router.post(
    "/{document_id}/resync",
    response_model=CommonResponse[None],
    status_code=status.HTTP_202_ACCEPTED,
)
def resync_source(document_id: str, service: DocumentService = Depends(get_document_service)):
    service.resync(document_id)
    return ok(message="Resync accepted.")
