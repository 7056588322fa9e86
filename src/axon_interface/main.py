"""
Main FastAPI Application for the Synapse Feed Cache Axon Interface

Builds the process-wide components once in the lifespan (database pool,
feed fetcher, feed cache coordinator) and keeps them on app.state.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..dendrites.feed_cache import FeedCacheCoordinator
from ..dendrites.feed_fetcher import FeedFetcher
from ..shared.config import Settings, get_settings
from ..shared.logging_config import setup_logging_from_settings
from ..shared.schemas import HealthResponse
from ..synaptic_vesicle.database import DatabaseManager
from .middleware import LoggingMiddleware
from .routers import rss

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings: Settings = app.state.settings
    setup_logging_from_settings(settings)
    logger.info("Starting Synapse Feed Cache", environment=settings.environment.value)

    db = DatabaseManager(settings.database)
    await db.initialize()
    await db.ensure_lock_table()

    fetcher = FeedFetcher(settings.fetcher)
    app.state.db = db
    app.state.fetcher = fetcher
    app.state.feed_cache = FeedCacheCoordinator(db, fetcher)

    try:
        yield
    finally:
        logger.info("Shutting down Synapse Feed Cache")
        await fetcher.aclose()
        await db.close()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.api.api_title,
        description="Cached RSS, Atom and podcast feed entries.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with consistent error format."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "type": "http_error",
                    "message": exc.detail,
                    "status_code": exc.status_code
                }
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions with consistent error format."""
        logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "type": "internal_error",
                    "message": "An internal server error occurred",
                    "status_code": 500
                }
            }
        )

    @app.get("/health", tags=["Health"], response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        """Health check endpoint."""
        db: Optional[DatabaseManager] = getattr(request.app.state, "db", None)
        database_ok = db is not None and await db.health_check()
        return HealthResponse(
            status="healthy" if database_ok else "degraded",
            version=settings.app_version,
            components={
                "api": {"status": "healthy"},
                "database": {"status": "healthy" if database_ok else "unhealthy"},
            },
        )

    app.include_router(rss.router, prefix=f"/api/{settings.api.api_version}", tags=["RSS"])

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "src.axon_interface.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
