"""
OpsDesk - FastAPI Application
=============================
Endpoints:
- /approvals/* - Unified approval queue and decisions
- GET /health - Health check
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from opsdesk import __version__
from opsdesk.api.approval_routes import router as approval_router
from opsdesk.api.middleware import RequestLoggingMiddleware
from opsdesk.approval.service import close_approval_service
from opsdesk.core.config import get_settings
from opsdesk.core.errors import (
    InvalidTransition,
    OpsDeskError,
    RequestNotFound,
    StoreError,
    StoreWriteFailed,
)
from opsdesk.core.logging import get_logger, setup_logging

logger = get_logger("api")


def status_code_for(exc: OpsDeskError) -> int:
    if isinstance(exc, RequestNotFound):
        return 404
    if isinstance(exc, InvalidTransition):
        return 409
    if isinstance(exc, (StoreWriteFailed, StoreError)):
        return 503
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    for warning in settings.validate_soft():
        logger.warning(f"Config: {warning}")
    yield
    await close_approval_service()


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    settings = get_settings()
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.JSON_LOGS)

    app = FastAPI(
        title="OpsDesk Approvals API",
        description="Unified multi-source approval queue and decision API.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(approval_router)

    # Exception handlers
    @app.exception_handler(OpsDeskError)
    async def opsdesk_exception_handler(request: Request, exc: OpsDeskError):
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}")
        return JSONResponse(status_code=status_code, content={"success": False, **exc.to_dict()})

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "env": settings.ENV, "store": settings.STORE_BACKEND}

    return app


app = create_app()
