"""Shared CLI plumbing: console, project option, and context lifecycle."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from opencontext.cli.errors import err_config, err_missing_credentials, format_error
from opencontext.config import ConfigError, load_config
from opencontext.context import AppContext, build_context
from opencontext.errors import OpenContextError
from opencontext.log import setup_logging
from opencontext.rag.llm_client import validate_api_key

console = Console()

ProjectOption = Annotated[
    Path,
    typer.Option("--project", "-p", help="Project directory holding opencontext.yaml."),
]


@contextmanager
def open_context(project_dir: Path, *, needs_embedder: bool = False) -> Iterator[AppContext]:
    """Build an AppContext for *project_dir* and close it on exit.

    Closing waits for queued ingestion and purge jobs, so a command that
    submits work returns only after that work has finished. Domain errors
    are printed and turned into exit code 1.

    Args:
        project_dir: Directory holding opencontext.yaml.
        needs_embedder: Fail fast when the embedding provider's API key is missing.
    """
    try:
        cfg = load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    if needs_embedder:
        try:
            validate_api_key(cfg.embedding.model)
        except EnvironmentError as exc:
            console.print(err_missing_credentials(str(exc)))
            raise typer.Exit(1)

    setup_logging(cfg.logging.level, cfg.logging.file)
    ctx = build_context(cfg, base_dir=project_dir)
    try:
        yield ctx
    except OpenContextError as exc:
        console.print(format_error(exc))
        raise typer.Exit(1)
    finally:
        ctx.close()
