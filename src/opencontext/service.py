"""Document administration: upload, status queries, delete, resync, recovery.

Upload, delete and resync claim the document id in the DocumentGuard before
touching its status and hold the claim until the job they start has
finished, so two of them can never interleave on one document; the loser
gets ConflictError.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any, BinaryIO

from loguru import logger

from opencontext.config import OpenContextConfig
from opencontext.db.index_store import ChunkIndex
from opencontext.db.metadata_store import MetadataStore
from opencontext.db.models import DocumentFilter, IngestionStatus, Page, SourceDocument
from opencontext.errors import (
    ConflictError,
    DocumentNotFoundError,
    InfrastructureError,
    PayloadTooLargeError,
    StaleStatusError,
    ValidationError,
)
from opencontext.ingest.base import detect_file_type, extension_for
from opencontext.pipeline.dedup import DeduplicationGuard, compute_checksum
from opencontext.pipeline.executor import IngestionExecutor
from opencontext.pipeline.guard import DocumentGuard
from opencontext.pipeline.orchestrator import IngestionOrchestrator
from opencontext.pipeline.purge import DocumentPurger
from opencontext.pipeline.state import Event, apply_transition
from opencontext.storage import ObjectStore, object_key

_MAX_PAGE_SIZE = 100
_INTERRUPTED = "Ingestion was interrupted before completion; resync to retry."


class DocumentService:
    def __init__(
        self,
        config: OpenContextConfig,
        metadata: MetadataStore,
        index: ChunkIndex,
        storage: ObjectStore,
        orchestrator: IngestionOrchestrator,
        purger: DocumentPurger,
        executor: IngestionExecutor,
        guard: DocumentGuard,
    ) -> None:
        self._cfg = config.ingestion
        self._metadata = metadata
        self._index = index
        self._storage = storage
        self._orchestrator = orchestrator
        self._purger = purger
        self._executor = executor
        self._guard = guard
        self._dedup = DeduplicationGuard(metadata)

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload(
        self, filename: str, data: bytes, content_type: str | None = None
    ) -> SourceDocument:
        """Store *data*, create a PENDING document and queue its ingestion.

        Raises:
            ValidationError: Missing filename or empty file.
            PayloadTooLargeError: File above ``ingestion.max_file_size_mb``.
            UnsupportedMediaError: Not PDF, Markdown or plain text.
            DuplicateDocumentError: Identical bytes were uploaded before.
            InfrastructureError: Object storage is unavailable.
        """
        filename = (filename or "").strip()
        if not filename:
            raise ValidationError("A filename is required")
        if not data:
            raise ValidationError("The uploaded file is empty")
        if len(data) > self._cfg.max_file_size_bytes:
            raise PayloadTooLargeError(
                f"File size {len(data)} bytes exceeds the {self._cfg.max_file_size_mb}MB limit"
            )
        file_type = detect_file_type(filename, content_type)
        checksum = compute_checksum(data)
        self._dedup.check(checksum)

        key = object_key(checksum, extension_for(file_type))
        try:
            self._storage.put(key, data)
        except OSError as exc:
            raise InfrastructureError("Object storage is not available.") from exc

        doc = self._dedup.admit(
            SourceDocument(
                id=str(uuid.uuid4()),
                original_filename=filename,
                storage_key=key,
                file_type=file_type,
                file_size=len(data),
                checksum=checksum,
            )
        )
        logger.info(
            f"Document uploaded | document_id={doc.id} file={filename} "
            f"type={file_type.value} size={len(data)}"
        )
        self._claim_and_submit(doc.id, "ingestion", lambda: None, self._orchestrator.run)
        return doc

    def read_upload(self, stream: BinaryIO) -> bytes:
        """Read an upload stream, stopping one byte past the size limit.

        Raises:
            PayloadTooLargeError: The stream holds more than ``ingestion.max_file_size_mb``.
        """
        limit = self._cfg.max_file_size_bytes
        data = stream.read(limit + 1)
        if len(data) > limit:
            raise PayloadTooLargeError(
                f"File exceeds the {self._cfg.max_file_size_mb}MB limit"
            )
        return data

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, document_id: str) -> SourceDocument:
        doc = self._metadata.get_document(document_id)
        if doc is None:
            raise DocumentNotFoundError(document_id)
        return doc

    def list_documents(
        self, filters: DocumentFilter | None = None, page: int = 0, size: int = 20
    ) -> Page:
        if page < 0:
            raise ValidationError("page must be >= 0")
        if not 1 <= size <= _MAX_PAGE_SIZE:
            raise ValidationError(f"size must be between 1 and {_MAX_PAGE_SIZE}")
        return self._metadata.list_documents(filters or DocumentFilter(), page=page, size=size)

    # ------------------------------------------------------------------
    # Delete / resync
    # ------------------------------------------------------------------

    def delete(self, document_id: str) -> Future:
        """Move the document to DELETING and purge it in the background.

        The document is invisible to explore/focus as soon as this returns.

        Raises:
            DocumentNotFoundError: Unknown id.
            ConflictError: Already deleting, mid-pipeline, or busy with another operation.
        """

        def prepare() -> None:
            doc = self.get(document_id)
            self._ensure_idle(doc, "delete")
            apply_transition(self._metadata, document_id, doc.status, Event.DELETE)
            logger.info(f"Document deleting | document_id={document_id}")

        return self._claim_and_submit(document_id, "delete", prepare, self._purger.purge)

    def resync(self, document_id: str) -> Future:
        """Re-run ingestion from PENDING; prior chunks are purged by the run.

        Raises:
            DocumentNotFoundError: Unknown id.
            ConflictError: Deleting, mid-pipeline, or busy with another operation.
        """

        def prepare() -> None:
            doc = self.get(document_id)
            self._ensure_idle(doc, "resync")
            if doc.status is not IngestionStatus.PENDING:
                apply_transition(self._metadata, document_id, doc.status, Event.RESYNC)
            logger.info(f"Document resync queued | document_id={document_id}")

        return self._claim_and_submit(document_id, "resync", prepare, self._orchestrator.run)

    # ------------------------------------------------------------------
    # Startup recovery
    # ------------------------------------------------------------------

    def recover(self) -> dict[str, int]:
        """Bring documents left mid-flight by a previous process to a stable state.

        - DELETING: the purge is resumed.
        - PARSING..INDEXING: chunks are discarded and the document goes to ERROR.
        - PENDING: ingestion is queued again.
        """
        counts = {"purged": 0, "interrupted": 0, "requeued": 0}

        for doc in self._metadata.documents_in_status([IngestionStatus.DELETING]):
            try:
                self._claim_and_submit(doc.id, "delete", lambda: None, self._purger.purge)
            except ConflictError:
                continue
            counts["purged"] += 1

        in_pipeline = [s for s in IngestionStatus if s.in_pipeline]
        for doc in self._metadata.documents_in_status(in_pipeline):
            try:
                self._index.delete_by_document(doc.id)
                self._metadata.delete_chunks_by_document(doc.id)
                apply_transition(
                    self._metadata, doc.id, doc.status, Event.FAIL, error_message=_INTERRUPTED
                )
            except StaleStatusError as exc:
                logger.warning(f"Recovery skipped | document_id={doc.id} reason={exc.message}")
                continue
            counts["interrupted"] += 1

        for doc in self._metadata.documents_in_status([IngestionStatus.PENDING]):
            try:
                self._claim_and_submit(doc.id, "ingestion", lambda: None, self._orchestrator.run)
            except ConflictError:
                continue
            counts["requeued"] += 1

        if any(counts.values()):
            logger.info(
                f"Recovery finished | purged={counts['purged']} "
                f"interrupted={counts['interrupted']} requeued={counts['requeued']}"
            )
        return counts

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_idle(doc: SourceDocument, operation: str) -> None:
        if doc.status is IngestionStatus.DELETING:
            raise ConflictError(f"Document {doc.id} is being deleted; {operation} rejected")
        if doc.status.in_pipeline:
            raise ConflictError(
                f"Document {doc.id} is being processed ({doc.status.value}); {operation} rejected"
            )

    def _claim_and_submit(
        self,
        document_id: str,
        operation: str,
        prepare: Callable[[], None],
        job: Callable[[str], Any],
    ) -> Future:
        """Claim *document_id*, run *prepare*, then queue *job*.

        The claim is released when *job* finishes, or immediately if
        *prepare* or the submission fails.
        """
        self._guard.claim(document_id, operation)
        try:
            prepare()
            return self._executor.submit(self._released, document_id, operation, job)
        except BaseException:
            self._guard.release(document_id)
            raise

    def _released(self, document_id: str, operation: str, job: Callable[[str], Any]) -> Any:
        try:
            return job(document_id)
        except Exception:
            logger.exception(f"Background {operation} failed | document_id={document_id}")
            raise
        finally:
            self._guard.release(document_id)
