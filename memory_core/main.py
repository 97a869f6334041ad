"""
memory-core FastAPI application entry point.

Surfaces: project resolution, workspace GitHub administration and the App
install callback, the GitHub webhook receiver, token-authenticated internal jobs.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from memory_core import __version__
from memory_core.config import get_settings
from memory_core.db.session import check_db_connection, engine
from memory_core.errors import MemoryCoreError, NotFoundError

logging.basicConfig(
    level=logging.DEBUG if get_settings().debug else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("memory-core starting")
    try:
        try:
            check_db_connection()
            logger.info("Database connection verified")
        except Exception as e:
            logger.critical("Database unreachable: %s", e)
            raise
        yield
    finally:
        logger.info("memory-core shutting down")
        engine.dispose()
        logger.info("Database connection pool closed")


async def memory_core_error_handler(request: Request, exc: MemoryCoreError) -> JSONResponse:
    """Map domain errors to ``{"detail": ...}`` with the error's status code."""
    content: dict = {"detail": exc.message}
    if isinstance(exc, NotFoundError) and exc.attempted:
        content["attempted"] = exc.attempted
    if exc.status_code >= 500:
        logger.error("Unhandled domain error on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=content)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.add_exception_handler(MemoryCoreError, memory_core_error_handler)

    # Mount API routes
    from memory_core.api.github import router as github_router
    from memory_core.api.github_auth import router as github_auth_router
    from memory_core.api.projects import router as projects_router
    from memory_core.api.webhooks import router as webhooks_router

    app.include_router(projects_router, prefix="/v1", tags=["projects"])
    app.include_router(
        github_router, prefix="/v1/workspaces/{workspace_key}/github", tags=["github"]
    )
    app.include_router(github_auth_router, prefix="/v1/auth/github", tags=["github"])
    app.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])

    # Internal job endpoints, token-authenticated (cron/scripts)
    from memory_core.api.internal import router as internal_router

    app.include_router(internal_router, tags=["internal"])

    @app.get("/health")
    def health() -> dict:
        """Health check endpoint. Confirms DB connectivity."""
        from sqlalchemy import text

        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return {
                "status": "ok",
                "version": __version__,
                "database": "connected",
            }
        except Exception:
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "version": __version__,
                    "database": "disconnected",
                },
            )

    return app


app = create_app()
