"""Rich error messages for the CLI.

Every error shown to the user names what went wrong and the action that
fixes it.

Usage:
    from opencontext.cli.errors import err_document_not_found
    console.print(err_document_not_found(doc_id))
    raise typer.Exit(1)
"""

from __future__ import annotations

from opencontext.errors import (
    ChunkNotFoundError,
    ConflictError,
    DocumentNotFoundError,
    DuplicateDocumentError,
    InfrastructureError,
    OpenContextError,
    PayloadTooLargeError,
    UnsupportedMediaError,
)


def err_config(message: str) -> str:
    """Configuration file could not be loaded."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix opencontext.yaml or run:  opencontext init"
    )


def err_missing_credentials(message: str) -> str:
    """Embedding provider credentials are not in the environment."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Or switch embedding.model in opencontext.yaml to a local provider (ollama/...)."
    )


def err_file_not_found(path: str) -> str:
    return f"[red]Error:[/] File not found: '{path}'\n  Check the path and try again."


def err_document_not_found(document_id: str) -> str:
    return (
        f"[red]Error:[/] Document '{document_id}' not found.\n"
        "  Run:  opencontext status  to list documents."
    )


def err_chunk_not_found(chunk_id: str) -> str:
    return (
        f"[red]Error:[/] Chunk '{chunk_id}' not found or not searchable yet.\n"
        "  Run:  opencontext search <query>  to get current chunk ids."
    )


def err_duplicate(document_id: str, status: str) -> str:
    return (
        f"[yellow]Duplicate:[/] identical content is already stored as '{document_id}' ({status}).\n"
        f"  Run:  opencontext resync {document_id}  to re-ingest it."
    )


def err_conflict(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  Wait for the running operation to finish, then retry.\n"
        "  If a previous run was interrupted or a purge failed, run:  opencontext recover"
    )


def err_unsupported(message: str) -> str:
    return f"[red]Error:[/] {message}\n  Supported formats: .pdf, .md, .markdown, .txt"


def err_too_large(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  Raise ingestion.max_file_size_mb in opencontext.yaml or split the file."
    )


def err_infrastructure(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  Check that the embedding provider is reachable and the data directory is writable."
    )


def format_error(exc: OpenContextError) -> str:
    """Render any domain error as an actionable message."""
    if isinstance(exc, DuplicateDocumentError):
        return err_duplicate(exc.document_id, exc.status)
    if isinstance(exc, DocumentNotFoundError):
        return err_document_not_found(exc.document_id)
    if isinstance(exc, ChunkNotFoundError):
        return err_chunk_not_found(exc.chunk_id)
    if isinstance(exc, ConflictError):
        return err_conflict(exc.message)
    if isinstance(exc, UnsupportedMediaError):
        return err_unsupported(exc.message)
    if isinstance(exc, PayloadTooLargeError):
        return err_too_large(exc.message)
    if isinstance(exc, InfrastructureError):
        return err_infrastructure(exc.message)
    return f"[red]Error:[/] {exc.message}"
