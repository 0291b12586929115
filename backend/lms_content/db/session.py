"""Database session management."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory. Repositories open one short session per call."""
    return async_sessionmaker(
        bind=bind,
        autoflush=False,
        expire_on_commit=False,  # Prevent lazy loading issues
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    from lms_content.db.engine import engine

    return build_session_factory(engine)


async def dispose_engine() -> None:
    from lms_content.db.engine import engine

    await engine.dispose()
