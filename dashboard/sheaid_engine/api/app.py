"""
FastAPI application factory for the SheAid gateway.

This module creates the FastAPI app with:
- CORS configuration for the dashboard frontend
- Engine lifecycle management
- Lifecycle, projection and ledger routes
- EngineError -> HTTP status mapping
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..errors import (
    EngineError,
    InvalidAmount,
    InvalidParameters,
    InvalidTransition,
    ProjectNotFound,
    ProjectResolutionAmbiguous,
    RpcUnavailable,
    TransitionInProgress,
)
from ..main import Engine
from .config import Settings
from .routes import router

logger = logging.getLogger(__name__)

# Most specific class first
ERROR_STATUS = (
    (TransitionInProgress, 409),
    (InvalidTransition, 409),
    (ProjectResolutionAmbiguous, 409),
    (InvalidAmount, 422),
    (InvalidParameters, 422),
    (ProjectNotFound, 404),
    (RpcUnavailable, 503),
)


def status_for(error: EngineError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.warning(
            "Request failed",
            extra={"path": request.url.path, "error_code": exc.code, "error": exc.message},
        )
    return JSONResponse(status_code=status, content=exc.to_dict())


def create_app(engine: Optional[Engine] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine: Engine to serve; built from the environment at startup if omitted
        settings: Gateway settings; loaded from the environment if omitted
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage engine lifecycle."""
        if app.state.engine is None:
            app.state.engine = Engine()
        served = app.state.engine
        if not served.is_running:
            await served.start(run_bridge=settings.run_bridge)

        yield

        await served.stop()

    app = FastAPI(
        title="SheAid Engine",
        description=(
            "Lifecycle transitions and reconciled views for the SheAid "
            "charity marketplace."
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.settings = settings

    # CORS for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.add_exception_handler(EngineError, engine_error_handler)

    # API routes
    app.include_router(router, prefix="/api/v1")

    # Health endpoint at root
    @app.get("/health")
    async def health(request: Request):
        served = request.app.state.engine
        running = served is not None and served.is_running
        return {
            "status": "healthy" if running else "starting",
            "service": "sheaid-engine",
            "version": __version__,
            "stats": served.get_stats() if served is not None else None,
        }

    return app


# Default app instance
app = create_app()
