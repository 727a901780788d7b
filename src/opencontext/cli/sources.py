"""Document administration commands: upload, status, delete, resync, recover.

All commands run in-process against the project's stores and wait for
the ingestion or purge job they start before returning.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from opencontext.cli.common import ProjectOption, console, open_context
from opencontext.cli.errors import err_file_not_found, format_error
from opencontext.db.models import DocumentFilter, IngestionStatus, SourceDocument
from opencontext.errors import DuplicateDocumentError, OpenContextError

_STATUS_STYLE = {
    IngestionStatus.COMPLETED: "green",
    IngestionStatus.ERROR: "red",
    IngestionStatus.DELETING: "yellow",
}


def upload_cmd(
    files: Annotated[list[Path], typer.Argument(help="Files to upload (PDF, Markdown, text).")],
    project: ProjectOption = Path("."),
) -> None:
    """Upload files and ingest them."""
    missing = [f for f in files if not f.is_file()]
    if missing:
        console.print(err_file_not_found(str(missing[0])))
        raise typer.Exit(1)

    failed = False
    uploaded: list[str] = []
    with open_context(project, needs_embedder=True) as ctx:
        for path in files:
            try:
                doc = ctx.documents.upload(path.name, path.read_bytes())
            except DuplicateDocumentError as exc:
                console.print(format_error(exc))
                continue
            except OpenContextError as exc:
                console.print(format_error(exc))
                failed = True
                continue
            console.print(f"  [dim]queued[/] {path.name} → {doc.id}")
            uploaded.append(doc.id)

        ctx.executor.wait_idle()
        for doc_id in uploaded:
            doc = ctx.documents.get(doc_id)
            console.print(_status_line(doc))
            if doc.status is IngestionStatus.ERROR:
                failed = True

    if failed:
        raise typer.Exit(1)


def status_cmd(
    document_id: Annotated[
        str | None, typer.Argument(help="Show one document instead of the list.")
    ] = None,
    status: Annotated[
        IngestionStatus | None,
        typer.Option("--status", "-s", help="Only documents in this status."),
    ] = None,
    filename: Annotated[
        str | None, typer.Option("--filename", "-f", help="Filename substring filter.")
    ] = None,
    page: Annotated[int, typer.Option("--page", min=0)] = 0,
    size: Annotated[int, typer.Option("--size", min=1, max=100)] = 20,
    project: ProjectOption = Path("."),
) -> None:
    """Show ingestion status of documents."""
    with open_context(project) as ctx:
        if document_id is not None:
            doc = ctx.documents.get(document_id)
            console.print(_status_line(doc))
            if doc.error_message:
                console.print(f"  [red]{doc.error_message}[/]")
            console.print(
                f"  chunks: {ctx.metadata.count_chunks(doc.id)}  "
                f"size: {doc.file_size} bytes  type: {doc.file_type.value}"
            )
            return

        result = ctx.documents.list_documents(
            DocumentFilter(status=status, filename=filename), page=page, size=size
        )

    if not result.items:
        console.print("[dim]No documents.[/]  Run:  opencontext upload <file>")
        return

    table = Table(show_header=True, header_style="bold", expand=False)
    table.add_column("ID", style="dim")
    table.add_column("File")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Created")
    for doc in result.items:
        style = _STATUS_STYLE.get(doc.status, "cyan")
        table.add_row(
            doc.id,
            doc.original_filename,
            doc.file_type.value,
            f"[{style}]{doc.status.value}[/]",
            doc.created_at[:16].replace("T", " ") if doc.created_at else "",
        )
    console.print(table)
    console.print(
        f"[dim]page {result.page + 1}/{max(result.total_pages, 1)} "
        f"({result.total_elements} documents)[/]"
    )


def delete_cmd(
    document_id: Annotated[str, typer.Argument(help="Document id to delete.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
    project: ProjectOption = Path("."),
) -> None:
    """Delete a document with its chunks, index entries and stored file."""
    with open_context(project) as ctx:
        doc = ctx.documents.get(document_id)
        console.print(f"\nDelete document: [bold]{doc.original_filename}[/] ({doc.id})")
        console.print(f"  Chunks: {ctx.metadata.count_chunks(doc.id)}")
        if not yes and not typer.confirm("Confirm deletion?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)
        ctx.documents.delete(document_id).result()
    console.print(f"[green]✓[/] Deleted {document_id}")


def resync_cmd(
    document_id: Annotated[str, typer.Argument(help="Document id to re-ingest.")],
    project: ProjectOption = Path("."),
) -> None:
    """Re-run ingestion for a document from its stored file."""
    with open_context(project, needs_embedder=True) as ctx:
        ctx.documents.resync(document_id).result()
        doc = ctx.documents.get(document_id)
    console.print(_status_line(doc))
    if doc.status is IngestionStatus.ERROR:
        console.print(f"  [red]{doc.error_message}[/]")
        raise typer.Exit(1)


def recover_cmd(project: ProjectOption = Path(".")) -> None:
    """Finish work a previous process left behind.

    Resumes purges of DELETING documents, marks documents stuck mid-pipeline
    as ERROR and re-queues PENDING ones, then waits for the jobs to finish.
    """
    with open_context(project, needs_embedder=True) as ctx:
        counts = ctx.documents.recover()
        ctx.executor.wait_idle()
        stuck = ctx.documents.list_documents(
            DocumentFilter(status=IngestionStatus.DELETING), size=100
        ).items

    console.print(
        f"[green]✓[/] Recovery: {counts['purged']} purge(s) resumed, "
        f"{counts['interrupted']} interrupted run(s) marked ERROR, "
        f"{counts['requeued']} pending document(s) re-queued"
    )
    if stuck:
        for doc in stuck:
            console.print(_status_line(doc))
        console.print("[red]Some deletions failed again.[/]  Check storage, then rerun:  opencontext recover")
        raise typer.Exit(1)


def _status_line(doc: SourceDocument) -> str:
    style = _STATUS_STYLE.get(doc.status, "cyan")
    return f"  [{style}]{doc.status.value:<10}[/] {doc.original_filename} ({doc.id})"
