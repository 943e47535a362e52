"""FastAPI server for ERP Migration Intelligence.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import (
    health,
    process_mining,
    security,
    migration,
    audit,
)
from api.state import get_state
from core import __version__
from core.config import get_settings
from core.observability.logging import configure_logging, get_logger
from core.security.approval import ApprovalError, ApprovalNotFoundError
from migration.objects import register_default_extractors
from process_mining.engine import UnknownProcessError
from process_mining.event_log import LogIntegrityError
from process_mining.reference_models import ReferenceModelInvalidError


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    configure_logging()
    register_default_extractors()
    get_state()
    logger.info("ERP Migration Intelligence API starting up...", extra_fields=get_settings().to_dict())

    yield

    # Shutdown
    logger.info("ERP Migration Intelligence API shutting down...")


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain errors to HTTP status codes."""

    @app.exception_handler(ApprovalNotFoundError)
    async def approval_not_found(request: Request, exc: ApprovalNotFoundError) -> JSONResponse:
        return _error(404, exc)

    @app.exception_handler(ApprovalError)
    async def approval_conflict(request: Request, exc: ApprovalError) -> JSONResponse:
        return _error(409, exc)

    @app.exception_handler(UnknownProcessError)
    async def unknown_process(request: Request, exc: UnknownProcessError) -> JSONResponse:
        return _error(400, exc)

    @app.exception_handler(LogIntegrityError)
    async def log_integrity(request: Request, exc: LogIntegrityError) -> JSONResponse:
        return _error(400, exc)

    @app.exception_handler(ReferenceModelInvalidError)
    async def invalid_model(request: Request, exc: ReferenceModelInvalidError) -> JSONResponse:
        return _error(400, exc)

    @app.exception_handler(ValueError)
    async def bad_value(request: Request, exc: ValueError) -> JSONResponse:
        return _error(400, exc)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="ERP Migration Intelligence API",
        description="Process intelligence over ERP event logs and gated ETLV migration runs",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(process_mining.router, prefix="/process-mining", tags=["Process Mining"])
    app.include_router(security.router, tags=["Security"])
    app.include_router(migration.router, prefix="/migration", tags=["Migration"])
    app.include_router(audit.router, prefix="/audit", tags=["Audit"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
