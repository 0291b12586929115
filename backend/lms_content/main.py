"""FastAPI application factory and main entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from lms_content import __version__
from lms_content.api.health import router as health_router
from lms_content.cache.redis import CacheService, build_cache_service
from lms_content.core.config import settings
from lms_content.core.errors import general_exception_handler, http_exception_handler
from lms_content.core.logging import get_logger, setup_logging
from lms_content.core.redis_client import close_redis_client
from lms_content.db.session import dispose_engine, get_session_factory
from lms_content.repositories.base import Repositories
from lms_content.repositories.sql import build_sql_repositories

logger = get_logger(__name__)


def create_app(cache: CacheService | None = None, repositories: Repositories | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    ``cache`` overrides the settings-built CacheService and ``repositories``
    the SQL repositories over the global engine (tests pass both in).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        setup_logging()
        app.state.cache = cache if cache is not None else build_cache_service()
        if app.state.cache.enabled:
            # Startup self-test; a failure only degrades caching
            if await app.state.cache.is_healthy():
                logger.info("cache_ready", extra={"event": "cache_ready"})
            else:
                logger.warning(
                    "cache_unavailable_at_startup",
                    extra={"event": "cache_unavailable_at_startup", "error": app.state.cache.health.last_error},
                )
        else:
            logger.info("cache_disabled", extra={"event": "cache_disabled"})
        if repositories is not None:
            app.state.repositories = repositories
        else:
            app.state.repositories = build_sql_repositories(get_session_factory())
        yield
        # Shutdown
        if cache is None:
            await close_redis_client()
        if repositories is None:
            await dispose_engine()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=__version__,
        description="Course hierarchy, caching and progress engine",
        openapi_url="/openapi.json" if settings.ENV != "prod" else None,
        docs_url="/docs" if settings.ENV != "prod" else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health_router)
    return app


# Create app instance
app = create_app()
