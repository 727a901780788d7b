"""opencontext serve: run the HTTP API with uvicorn."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
import uvicorn

from opencontext.api.app import create_app
from opencontext.cli.common import ProjectOption, console
from opencontext.cli.errors import err_config
from opencontext.config import API_KEY_ENV, ConfigError, api_key_from_env, load_config
from opencontext.log import setup_logging


def serve_cmd(
    host: Annotated[str | None, typer.Option("--host", help="Bind address.")] = None,
    port: Annotated[int | None, typer.Option("--port", help="Bind port.")] = None,
    project: ProjectOption = Path("."),
) -> None:
    """Serve the REST API (admin routes need OPENCONTEXT_API_KEY)."""
    try:
        cfg = load_config(project)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    setup_logging(cfg.logging.level, cfg.logging.file)
    if not api_key_from_env():
        console.print(
            "[yellow]Warning:[/] No admin API key; /sources endpoints will reject every request.\n"
            f"  Set:  export {API_KEY_ENV}=<secret>"
        )

    app = create_app(config=cfg, project_dir=project.resolve())
    uvicorn.run(
        app,
        host=host or cfg.api.host,
        port=port or cfg.api.port,
        log_config=None,
    )
