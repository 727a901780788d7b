"""opencontext init: scaffold a project directory.

Creates:
  opencontext.yaml   project config (storage, embedding, ingestion, retrieval)
  .opencontext/      data dir with metadata.db, index.db and objects/
  .gitignore         updated with the data dir when one exists
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from opencontext.cli.common import console, open_context
from opencontext.config import API_KEY_ENV, write_project_config

_GITIGNORE_ENTRIES = [".opencontext/"]


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
) -> None:
    """Initialize an OpenContext project: config file and empty stores."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    cfg_path = write_project_config(project_dir)
    console.print(f"  [green]✓[/] {cfg_path.name}")

    with open_context(project_dir) as ctx:
        data_dir = Path(ctx.config.storage.data_dir)
    console.print(f"  [green]✓[/] {data_dir}/ (metadata.db, index.db)")

    _update_gitignore(project_dir)

    console.print(f"\n[bold green]✓ OpenContext project initialized in {project_dir}[/]")
    console.print("\nNext steps:")
    console.print("  1. opencontext upload <file>        (ingest PDF, Markdown or text)")
    console.print("  2. opencontext search \"<query>\"     (explore)")
    console.print("  3. opencontext content <chunk-id>   (focus)")
    console.print(f"  4. export {API_KEY_ENV}=... && opencontext serve")


def _update_gitignore(project_dir: Path) -> None:
    """Add the data dir to .gitignore if the file already exists."""
    gitignore = project_dir / ".gitignore"
    if not gitignore.exists():
        return
    existing = gitignore.read_text(encoding="utf-8")
    to_add = [e for e in _GITIGNORE_ENTRIES if e not in existing]
    if to_add:
        with gitignore.open("a", encoding="utf-8") as f:
            f.write("\n# OpenContext\n")
            for entry in to_add:
                f.write(f"{entry}\n")
        console.print("  [green]✓[/] .gitignore (updated with OpenContext entries)")
