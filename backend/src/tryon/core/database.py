"""Database session factory and connectivity probe for the health check."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def setup_db_session(db_url: str, pool_size: int = 5) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    The gateway owns no tables; the pool exists so /api/v1/health can report
    whether the backing store shared with the auth provider is reachable.

    Args:
        db_url: PostgreSQL connection URL (postgresql+psycopg://...)
        pool_size: Maximum number of connections in the pool (default: 5)

    Returns:
        Async session factory for creating database sessions
    """
    engine = create_async_engine(
        db_url,
        pool_size=pool_size,
        max_overflow=0,
        pool_pre_ping=True,
        echo=False,
    )

    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def check_database(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Run SELECT 1, raising whatever the driver raises on failure."""
    async with session_factory() as session:
        result = await session.execute(text("SELECT 1"))
        result.scalar()
