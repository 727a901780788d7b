"""OpenContext CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from opencontext.cli.init import init_cmd
from opencontext.cli.query import content_cmd, search_cmd
from opencontext.cli.serve import serve_cmd
from opencontext.cli.sources import (
    delete_cmd,
    recover_cmd,
    resync_cmd,
    status_cmd,
    upload_cmd,
)


def _installed_version() -> str:
    try:
        return importlib.metadata.version("opencontext")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"opencontext {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="opencontext",
    help=(
        "OpenContext: hierarchical document ingestion and two-phase retrieval.\n\n"
        "  opencontext search   Explore: find relevant chunks.\n"
        "  opencontext content  Focus: read one chunk within a token budget."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """OpenContext: hierarchical document ingestion and two-phase retrieval."""


app.command("init")(init_cmd)
app.command("upload")(upload_cmd)
app.command("status")(status_cmd)
app.command("delete")(delete_cmd)
app.command("resync")(resync_cmd)
app.command("recover")(recover_cmd)
app.command("search")(search_cmd)
app.command("content")(content_cmd)
app.command("serve")(serve_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed OpenContext version."""
    typer.echo(f"opencontext {_installed_version()}")


if __name__ == "__main__":
    app()
