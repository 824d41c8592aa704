"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.api.files import router as files_router
from backend.api.mounts import router as mounts_router
from backend.config import Settings
from backend.exceptions import InternalServerError
from backend.filesystem.mount_config import load_mounts
from backend.services.delta_service import RdiffEngine

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Mapping

    from backend.filesystem.mount_config import MountConfig
    from backend.services.delta_service import DeltaEngine

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    _configure_logging(settings.debug)
    logger.info("Starting bitfog (debug=%s)", settings.debug)

    if app.state.mounts is None:
        try:
            app.state.mounts = load_mounts(settings.mounts_file)
        except Exception as exc:
            logger.critical(
                "Failed to load mount configuration from %s: %s", settings.mounts_file, exc
            )
            raise

    for name, mount in app.state.mounts.items():
        if not mount.root.is_dir():
            logger.warning("Mount %s root %s is not a directory", name, mount.root)

    yield

    logger.info("bitfog stopped")


def create_app(
    settings: Settings | None = None,
    mounts: Mapping[str, MountConfig] | None = None,
    delta_engine: DeltaEngine | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``mounts`` is loaded from ``settings.mounts_file`` at startup when not
    given. It is never mutated once the app is serving.
    """
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="bitfog",
        description="Manifest-driven directory tree sync server",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings
    app.state.mounts = mounts
    app.state.delta_engine = (
        delta_engine if delta_engine is not None else RdiffEngine(settings.rdiff_command)
    )

    # Listing routes must come first so /{mount}/ is not treated as an empty file path.
    app.include_router(mounts_router)
    app.include_router(files_router)

    # Global exception handlers for errors the routes let through

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Storage operation failed"},
        )

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "backend.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
