"""Two-phase retrieval from the terminal: search (explore) and content (focus)."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from opencontext.cli.common import ProjectOption, console, open_context


def search_cmd(
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    top_k: Annotated[
        int | None, typer.Option("--top-k", "-k", help="Maximum results (default from config).")
    ] = None,
    project: ProjectOption = Path("."),
) -> None:
    """Find relevant chunks; prints ids, titles, breadcrumbs and snippets."""
    with open_context(project, needs_embedder=True) as ctx:
        results = ctx.retrieval.explore(query, top_k)

    if not results:
        console.print("[dim]No results.[/]")
        return

    table = Table(show_header=True, header_style="bold", expand=False)
    table.add_column("Score", justify="right")
    table.add_column("Chunk ID", style="dim")
    table.add_column("Title")
    table.add_column("Path")
    table.add_column("Snippet")
    for r in results:
        table.add_row(
            f"{r.relevance_score:.3f}",
            r.chunk_id,
            r.title,
            " > ".join(r.breadcrumbs),
            r.snippet,
        )
    console.print(table)


def content_cmd(
    chunk_id: Annotated[str, typer.Argument(help="Chunk id returned by search.")],
    max_tokens: Annotated[
        int | None, typer.Option("--max-tokens", "-t", help="Token budget (default from config).")
    ] = None,
    project: ProjectOption = Path("."),
) -> None:
    """Print a chunk's full content, truncated to the token budget."""
    with open_context(project) as ctx:
        result = ctx.retrieval.focus(chunk_id, max_tokens)

    subtitle = f"{result.token_info.actual_tokens} tokens ({result.token_info.tokenizer})"
    if result.truncated:
        subtitle += " [yellow]truncated[/]"
    console.print(Panel(result.content, title=f"[bold]{chunk_id}[/]", subtitle=subtitle))
