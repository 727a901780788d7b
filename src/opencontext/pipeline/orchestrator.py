"""Ingestion orchestrator: drives one document PENDING → COMPLETED.

Steps, each persisted as a guarded status transition:

    PARSING    stored bytes → typed elements (extractor)
    CHUNKING   elements → validated chunk forest; structural rows written
    EMBEDDING  every chunk embedded (retried, time-bounded); all or nothing
    INDEXING   payload + vectors written to the chunk index in one transaction

Any step failure moves the document to ERROR with the cause and removes the
chunk rows and index entries written so far. Every run starts by removing
whatever a previous run left behind, so re-running is idempotent.
"""

from __future__ import annotations

import time

from loguru import logger

from opencontext.config import OpenContextConfig
from opencontext.db.index_store import ChunkIndex
from opencontext.db.metadata_store import MetadataStore
from opencontext.db.models import FileType, IngestionStatus, SourceDocument
from opencontext.errors import OpenContextError, PipelineError, StaleStatusError
from opencontext.ingest.base import BaseExtractor, Element
from opencontext.ingest.markdown import MarkdownExtractor
from opencontext.ingest.pdf import PdfExtractor
from opencontext.ingest.plaintext import PlainTextExtractor
from opencontext.pipeline.guard import DocumentGuard
from opencontext.pipeline.hierarchy import (
    ChunkNode,
    HierarchyBuilder,
    HierarchyError,
    validate_forest,
)
from opencontext.pipeline.resilience import StepTimeoutError, TimedCaller, retry_policy
from opencontext.pipeline.state import Event, apply_transition
from opencontext.rag.llm_client import Embedder
from opencontext.storage import ObjectStore

# Upper bound on characters sent to the embedding model per chunk.
_MAX_EMBED_CHARS = 8000
_MAX_ERROR_MESSAGE = 1000


def default_extractors() -> dict[FileType, BaseExtractor]:
    return {
        FileType.PDF: PdfExtractor(),
        FileType.MARKDOWN: MarkdownExtractor(),
        FileType.TXT: PlainTextExtractor(),
    }


def embedding_text(node: ChunkNode) -> str:
    """Text sent to the embedding model: breadcrumb path, then chunk content."""
    path = " > ".join(node.breadcrumbs)
    text = f"{path}\n\n{node.content}" if path and node.content != path else node.content
    return text[:_MAX_EMBED_CHARS]


class IngestionOrchestrator:
    """Run the ingestion pipeline for single documents.

    Args:
        config: Root configuration (ingestion + embedding sections are used).
        metadata: Metadata store holding documents and chunk structure.
        index: Chunk index receiving payloads and vectors.
        storage: Object store holding the uploaded bytes.
        embedder: Embedding model client.
        extractors: Extractor per file type; defaults to the built-in ones.
        guard: Shared per-document guard; a private one is created if omitted.
    """

    def __init__(
        self,
        config: OpenContextConfig,
        metadata: MetadataStore,
        index: ChunkIndex,
        storage: ObjectStore,
        embedder: Embedder,
        *,
        extractors: dict[FileType, BaseExtractor] | None = None,
        guard: DocumentGuard | None = None,
    ) -> None:
        self._cfg = config.ingestion
        self._batch_size = max(1, config.embedding.batch_size)
        self._metadata = metadata
        self._index = index
        self._storage = storage
        self._embedder = embedder
        self._extractors = extractors if extractors is not None else default_extractors()
        self._guard = guard or DocumentGuard()
        self._builder = HierarchyBuilder(
            granularity=self._cfg.granularity,
            max_chunk_chars=self._cfg.max_chunk_chars,
            chunk_overlap=self._cfg.chunk_overlap,
        )
        self._caller = TimedCaller(self._cfg.step_timeout_seconds, workers=self._cfg.workers * 2)
        self._embed_batch = retry_policy(self._cfg, "embedding")(self._embed_batch_once)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, document_id: str) -> IngestionStatus | None:
        """Ingest *document_id* if it is PENDING.

        Returns the document's status afterwards (None if it no longer exists).
        Pipeline failures are recorded on the document, never raised.

        Raises:
            ConflictError: If another run holds the document's run lock.
        """
        with self._guard.exclusive(document_id):
            return self._run(document_id)

    def close(self) -> None:
        self._caller.shutdown()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _run(self, document_id: str) -> IngestionStatus | None:
        doc = self._metadata.get_document(document_id)
        if doc is None:
            logger.warning(f"Ingestion skipped, document not found | document_id={document_id}")
            return None
        if doc.status is not IngestionStatus.PENDING:
            logger.warning(
                f"Ingestion skipped | document_id={document_id} status={doc.status.value}"
            )
            return doc.status

        started = time.monotonic()
        state = IngestionStatus.PENDING
        step = "start"
        logger.info(f"Ingestion started | document_id={document_id} file={doc.original_filename}")
        try:
            state = apply_transition(self._metadata, document_id, state, Event.START)
            self._discard_chunks(document_id)

            step = "parse"
            elements = self._parse(doc)
            state = apply_transition(self._metadata, document_id, state, Event.PARSED)

            step = "chunk"
            nodes = self._chunk(doc, elements)
            state = apply_transition(self._metadata, document_id, state, Event.CHUNKED)

            step = "embed"
            vectors = self._embed(document_id, nodes)
            state = apply_transition(self._metadata, document_id, state, Event.EMBEDDED)

            step = "index"
            self._write_index(doc, nodes, vectors)
            state = apply_transition(self._metadata, document_id, state, Event.INDEXED)
        except StaleStatusError as exc:
            return self._abort(document_id, exc)
        except Exception as exc:
            return self._fail(document_id, state, step, exc)

        logger.info(
            f"Ingestion completed | document_id={document_id} chunks={len(nodes)} "
            f"elapsed={time.monotonic() - started:.2f}s"
        )
        return IngestionStatus.COMPLETED

    def _parse(self, doc: SourceDocument) -> list[Element]:
        try:
            data = self._storage.get(doc.storage_key)
        except OSError as exc:
            raise PipelineError("parse", f"stored file unavailable ({exc})") from exc
        extractor = self._extractors.get(doc.file_type)
        if extractor is None:
            raise PipelineError("parse", f"no extractor for {doc.file_type.value}")
        elements = self._caller.call("parse", extractor.extract, data, doc.original_filename)
        if not elements:
            raise PipelineError("parse", "no text could be extracted")
        logger.debug(f"Parsed | document_id={doc.id} elements={len(elements)}")
        return elements

    def _chunk(self, doc: SourceDocument, elements: list[Element]) -> list[ChunkNode]:
        nodes = self._builder.build(doc.id, elements, doc.original_filename)
        if not nodes:
            raise PipelineError("chunk", "document produced no chunks")
        try:
            validate_forest(nodes)
        except HierarchyError as exc:
            raise PipelineError("chunk", str(exc)) from exc
        self._metadata.insert_chunks([n.chunk for n in nodes])
        roots = sum(1 for n in nodes if n.chunk.is_root)
        logger.debug(f"Chunked | document_id={doc.id} chunks={len(nodes)} roots={roots}")
        return nodes

    def _embed_batch_once(self, texts: list[str]) -> list[list[float]]:
        vectors = self._caller.call("embed", self._embedder.embed_batch, texts)
        if len(vectors) != len(texts):
            raise ValueError(f"expected {len(texts)} embeddings, got {len(vectors)}")
        return vectors

    def _embed(self, document_id: str, nodes: list[ChunkNode]) -> list[list[float]]:
        """Embed every chunk. Nothing is kept if any batch fails."""
        texts = [embedding_text(n) for n in nodes]
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            vectors.extend(self._embed_batch(texts[start : start + self._batch_size]))
        dims = {len(v) for v in vectors}
        if len(dims) != 1:
            raise PipelineError("embed", f"inconsistent embedding dimensions {sorted(dims)}")
        logger.debug(f"Embedded | document_id={document_id} vectors={len(vectors)}")
        return vectors

    def _write_index(
        self, doc: SourceDocument, nodes: list[ChunkNode], vectors: list[list[float]]
    ) -> None:
        entries = [n.to_content(doc.file_type.value, v) for n, v in zip(nodes, vectors)]
        self._caller.call("index", self._index.write_chunks, entries)
        self._metadata.mark_chunks_indexed(doc.id)
        logger.debug(f"Indexed | document_id={doc.id} entries={len(entries)}")

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _discard_chunks(self, document_id: str) -> None:
        """Remove index entries and chunk rows of *document_id*."""
        removed_index = self._index.delete_by_document(document_id)
        removed_rows = self._metadata.delete_chunks_by_document(document_id)
        if removed_index or removed_rows:
            logger.debug(
                f"Discarded chunks | document_id={document_id} "
                f"index={removed_index} rows={removed_rows}"
            )

    def _fail(
        self, document_id: str, state: IngestionStatus, step: str, exc: Exception
    ) -> IngestionStatus | None:
        if isinstance(exc, OpenContextError):
            message = exc.message
        elif isinstance(exc, StepTimeoutError):
            message = str(exc)
        else:
            message = f"{step} failed: {exc}"
        logger.opt(exception=exc).error(
            f"Ingestion failed | document_id={document_id} step={step} error={message}"
        )
        try:
            self._discard_chunks(document_id)
        except Exception as cleanup_exc:
            # Leftovers stay invisible (ERROR is filtered) and are purged by the next run.
            logger.error(f"Cleanup after failure failed | document_id={document_id} error={cleanup_exc}")
        try:
            apply_transition(
                self._metadata,
                document_id,
                state,
                Event.FAIL,
                error_message=message[:_MAX_ERROR_MESSAGE],
            )
        except StaleStatusError as stale:
            return self._abort(document_id, stale)
        return IngestionStatus.ERROR

    def _abort(self, document_id: str, exc: StaleStatusError) -> IngestionStatus | None:
        """Stop a run whose document changed status underneath it.

        Writes of this run are discarded only when the document is being
        deleted or is already gone; the document row is never touched.
        """
        logger.warning(f"Ingestion aborted | document_id={document_id} reason={exc.message}")
        doc = self._metadata.get_document(document_id)
        if doc is None or doc.status is IngestionStatus.DELETING:
            self._discard_chunks(document_id)
        return doc.status if doc else None
