"""Error taxonomy for OpenContext.

Every failure carries a stable machine-readable ``code``, the HTTP status the
API layer maps it to, and a human-readable message. Callers raise the most
specific subclass; the API and CLI layers translate them centrally.

Pipeline failures are recorded on the document (status ERROR + message) and
never raised to the caller that triggered the upload.
"""

from __future__ import annotations

from typing import Any


class OpenContextError(Exception):
    """Base class for all domain errors."""

    code: str = "COMMON_003"
    http_status: int = 500
    default_message: str = "Unknown server error occurred."

    def __init__(self, message: str | None = None, data: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.message)


class ValidationError(OpenContextError):
    """Caller error: missing or malformed input."""

    code = "COMMON_002"
    http_status = 400
    default_message = "Input validation failed."


class AuthenticationError(OpenContextError):
    code = "AUTH_001"
    http_status = 403
    default_message = "Insufficient permission to perform this request."


class DocumentNotFoundError(OpenContextError):
    code = "DOC_001"
    http_status = 404
    default_message = "Document with the specified ID not found."

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class DuplicateDocumentError(OpenContextError):
    """Identical content was already uploaded.

    Carries the existing document's id and status so the caller can short-circuit.
    """

    code = "DOC_002"
    http_status = 409
    default_message = "A file with identical content already exists."

    def __init__(self, document_id: str, status: str) -> None:
        super().__init__(
            f"A file with identical content already exists: {document_id} ({status})",
            data={"id": document_id, "status": status},
        )
        self.document_id = document_id
        self.status = status


class ConflictError(OpenContextError):
    """Operation collides with another operation on the same document."""

    code = "DOC_003"
    http_status = 409
    default_message = "The document is currently being processed by another operation."


class StaleStatusError(ConflictError):
    """A status compare-and-swap observed a different status than expected."""

    def __init__(self, document_id: str, expected: str, actual: str | None) -> None:
        super().__init__(
            f"Document {document_id} is {actual or 'gone'}, expected {expected}"
        )
        self.document_id = document_id
        self.expected = expected
        self.actual = actual


class InvalidTransitionError(ConflictError):
    """The state machine has no edge for (state, event)."""

    def __init__(self, state: str, event: str) -> None:
        super().__init__(f"Cannot apply {event} to a document in {state}")
        self.state = state
        self.event = event


class PayloadTooLargeError(OpenContextError):
    code = "DOC_004"
    http_status = 413
    default_message = "File size exceeds the maximum upload limit."


class UnsupportedMediaError(OpenContextError):
    code = "DOC_005"
    http_status = 415
    default_message = "Unsupported file format. Please upload PDF, Markdown or plain text files."


class ChunkNotFoundError(OpenContextError):
    code = "CTX_002"
    http_status = 404
    default_message = "Chunk with the specified ID not found."

    def __init__(self, chunk_id: str) -> None:
        super().__init__(f"Chunk not found: {chunk_id}")
        self.chunk_id = chunk_id


class PipelineError(OpenContextError):
    """An ingestion step failed after retries. Recorded on the document."""

    code = "INFRA_001"
    http_status = 500
    default_message = "Internal error occurred during document processing."

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step} failed: {message}")
        self.step = step


class InfrastructureError(OpenContextError):
    """A backing store is unreachable. Transient; retry-worthy."""

    code = "INFRA_002"
    http_status = 503
    default_message = "External service is not responding."
