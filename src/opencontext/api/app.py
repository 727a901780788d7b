"""FastAPI application factory.

Builds the app, registers routers under /api/v1, maps domain errors to the
response envelope, and owns the AppContext lifecycle when it creates one.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from opencontext import __version__
from opencontext.api.routers import health, retrieval, sources
from opencontext.api.schemas import failure
from opencontext.config import OpenContextConfig, api_key_from_env, load_config
from opencontext.context import AppContext, build_context
from opencontext.errors import OpenContextError, ValidationError

_API_PREFIX = "/api/v1"


def create_app(
    context: AppContext | None = None,
    *,
    config: OpenContextConfig | None = None,
    project_dir: Path | None = None,
    api_key: str | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        context: Pre-built components. When omitted, one is built from
            *config* (or the loaded configuration) at startup, recovered,
            and closed at shutdown.
        config: Configuration used when the app builds its own context.
        project_dir: Directory holding opencontext.yaml and the data dir.
        api_key: Admin key; defaults to OPENCONTEXT_API_KEY.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.context is None
        if owned:
            cfg = config or load_config(project_dir)
            app.state.context = build_context(cfg, base_dir=project_dir)
            app.state.context.documents.recover()
        if not app.state.api_key:
            logger.warning("OPENCONTEXT_API_KEY is not set; admin endpoints will reject every request")
        logger.info("OpenContext API started")
        yield
        if owned:
            app.state.context.close()
            app.state.context = None
        logger.info("OpenContext API stopped")

    app = FastAPI(
        title="OpenContext API",
        description="Hierarchical document ingestion and two-phase retrieval",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.context = context
    app.state.api_key = api_key if api_key is not None else api_key_from_env()

    app.include_router(sources.router, prefix=_API_PREFIX)
    app.include_router(retrieval.router, prefix=_API_PREFIX)
    app.include_router(health.router, prefix=_API_PREFIX)
    _register_exception_handlers(app)
    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(OpenContextError)
    async def handle_domain_error(request: Request, exc: OpenContextError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.error(f"{exc.code} {request.method} {request.url.path} | {exc.message}")
        else:
            logger.info(f"{exc.code} {request.method} {request.url.path} | {exc.message}")
        return JSONResponse(
            status_code=exc.http_status,
            content=failure(exc.code, exc.message, exc.data),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(
            status_code=ValidationError.http_status,
            content=failure(ValidationError.code, f"Input validation failed: {details}"),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=failure("COMMON_001", str(exc.detail)),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content=failure(OpenContextError.code, OpenContextError.default_message),
        )
