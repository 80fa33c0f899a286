"""
Visitor Analytics: Async SQLAlchemy database setup.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from analytics_api.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=False,
    # pool settings only for postgres
    **(
        {}
        if "sqlite" in settings.database_url
        else {
            "pool_size": 5,
            "max_overflow": 10,
            "pool_pre_ping": True,
            "pool_recycle": 300,
        }
    ),
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
async_session_factory = async_session  # alias used by background jobs


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """FastAPI dependency: yields an async session."""
    async with async_session() as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    """FastAPI dependency for services that open one transaction per unit of work."""
    return async_session_factory


async def init_db() -> None:
    """Create all tables (used in lifespan and tests)."""
    # Register every model on Base.metadata before create_all.
    import analytics_api.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
