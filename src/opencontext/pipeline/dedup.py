"""Checksum-based admission control for uploads."""

from __future__ import annotations

import hashlib
import sqlite3

from loguru import logger

from opencontext.db.metadata_store import MetadataStore
from opencontext.db.models import SourceDocument
from opencontext.errors import DuplicateDocumentError


def compute_checksum(data: bytes) -> str:
    """SHA-256 hex digest of *data*."""
    return hashlib.sha256(data).hexdigest()


class DeduplicationGuard:
    """Admit a new document only if no document with the same checksum exists.

    The existence check is a fast path; the UNIQUE constraint on the checksum
    column decides races between concurrent uploads of the same bytes.
    """

    def __init__(self, store: MetadataStore) -> None:
        self._store = store

    def check(self, checksum: str) -> None:
        """Raise DuplicateDocumentError if *checksum* is already known."""
        existing = self._store.get_document_by_checksum(checksum)
        if existing is not None:
            raise DuplicateDocumentError(existing.id, existing.status.value)

    def admit(self, doc: SourceDocument) -> SourceDocument:
        """Insert *doc* unless its checksum is taken.

        Raises:
            DuplicateDocumentError: Carrying the existing document's id and status.
        """
        self.check(doc.checksum)
        try:
            return self._store.insert_document(doc)
        except sqlite3.IntegrityError as exc:
            existing = self._store.get_document_by_checksum(doc.checksum)
            if existing is None:
                raise
            logger.info(
                f"Concurrent upload lost checksum race | checksum={doc.checksum[:12]} "
                f"existing={existing.id}"
            )
            raise DuplicateDocumentError(existing.id, existing.status.value) from exc
