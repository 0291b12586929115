"""Database engine configuration."""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from lms_content.core.config import settings


def create_db_engine(url: str | None = None) -> AsyncEngine:
    """Create the async SQLAlchemy engine."""
    return create_async_engine(
        url or settings.DATABASE_URL,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        echo=False,  # Set to True for SQL query logging
    )


# Global engine instance
engine = create_db_engine()
