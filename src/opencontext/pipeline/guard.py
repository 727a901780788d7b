"""Per-document mutual exclusion.

Two layers:
- a claim registry: upload, resync and delete claim the document id for the
  lifetime of the job they start, and a second claim on the same id fails
  with ConflictError;
- a per-id lock held by the orchestrator for the duration of one run, so two
  runs can never interleave on one document even if a caller skips claiming.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from opencontext.errors import ConflictError


class DocumentGuard:
    def __init__(self) -> None:
        self._mutex = threading.Lock()
        self._claims: dict[str, str] = {}
        self._locks: dict[str, threading.Lock] = {}

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def claim(self, document_id: str, operation: str) -> None:
        """Claim *document_id* for *operation*.

        Raises:
            ConflictError: If another operation holds the claim.
        """
        with self._mutex:
            holder = self._claims.get(document_id)
            if holder is not None:
                raise ConflictError(
                    f"Document {document_id} is busy with {holder}; {operation} rejected"
                )
            self._claims[document_id] = operation

    def release(self, document_id: str) -> None:
        with self._mutex:
            self._claims.pop(document_id, None)

    def holder(self, document_id: str) -> str | None:
        with self._mutex:
            return self._claims.get(document_id)

    @contextmanager
    def claimed(self, document_id: str, operation: str) -> Iterator[None]:
        self.claim(document_id, operation)
        try:
            yield
        finally:
            self.release(document_id)

    # ------------------------------------------------------------------
    # Run lock
    # ------------------------------------------------------------------

    @contextmanager
    def exclusive(self, document_id: str) -> Iterator[None]:
        """Hold the run lock of *document_id*; fail fast if another run holds it."""
        with self._mutex:
            lock = self._locks.setdefault(document_id, threading.Lock())
        if not lock.acquire(blocking=False):
            raise ConflictError(f"Another ingestion run is active for document {document_id}")
        try:
            yield
        finally:
            lock.release()
            with self._mutex:
                if self._locks.get(document_id) is lock and not lock.locked():
                    del self._locks[document_id]
