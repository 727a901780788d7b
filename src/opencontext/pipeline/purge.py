"""Explicit multi-store purge of a DELETING document.

No store offers a transaction spanning the others, so the purge runs as an
ordered list of idempotent steps, each retried:

    1. chunk index entries   (search stops returning the document's text)
    2. chunk rows            (structure)
    3. stored object         (file bytes)
    4. document row          (the document disappears)

A purge that fails part-way leaves the document in DELETING; running it again
resumes safely because every step tolerates already-deleted data.
"""

from __future__ import annotations

from loguru import logger

from opencontext.config import IngestionCfg
from opencontext.db.index_store import ChunkIndex
from opencontext.db.metadata_store import MetadataStore
from opencontext.errors import PipelineError
from opencontext.pipeline.resilience import retry_policy
from opencontext.pipeline.state import Event, transition
from opencontext.storage import ObjectStore


class DocumentPurger:
    def __init__(
        self,
        cfg: IngestionCfg,
        metadata: MetadataStore,
        index: ChunkIndex,
        storage: ObjectStore,
    ) -> None:
        self._metadata = metadata
        self._index = index
        self._storage = storage
        self._retry = retry_policy(cfg, "purge")

    def purge(self, document_id: str) -> bool:
        """Remove every trace of a DELETING document.

        Returns:
            True if the document was removed, False if it did not exist.

        Raises:
            InvalidTransitionError: If the document is not DELETING.
            PipelineError: If a step still fails after retries.
        """
        doc = self._metadata.get_document(document_id)
        if doc is None:
            return False
        transition(doc.status, Event.PURGED)

        steps = [
            ("index", lambda: self._index.delete_by_document(document_id)),
            ("chunks", lambda: self._metadata.delete_chunks_by_document(document_id)),
            ("object", lambda: self._storage.delete(doc.storage_key)),
            ("document", lambda: self._metadata.delete_document(document_id)),
        ]
        for name, step in steps:
            try:
                result = self._retry(step)()
            except Exception as exc:
                logger.opt(exception=exc).error(
                    f"Purge step failed | document_id={document_id} step={name}"
                )
                raise PipelineError("purge", f"{name} step failed: {exc}") from exc
            logger.debug(f"Purge step done | document_id={document_id} step={name} result={result}")

        logger.info(f"Document purged | document_id={document_id} file={doc.original_filename}")
        return True

