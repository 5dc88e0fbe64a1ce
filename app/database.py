"""
Database Connection Module
Handles PostgreSQL connection using SQLAlchemy async engine, and the
single transaction helper every ledger-mutating operation runs through.
"""

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from app.core.config import get_settings
from app.core.exceptions import LedgerError, InternalError

settings = get_settings()
logger = logging.getLogger(__name__)

T = TypeVar("T")

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
)

# Session factory - creates new database sessions
async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False  # Objects remain accessible after commit
)


# Base class for all our models
class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """
    Create all tables in database.
    Called once at application startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ Database tables created successfully!")


async def run_in_transaction(
    session: AsyncSession,
    operation: Callable[[AsyncSession], Awaitable[T]],
) -> T:
    """
    Run ``operation`` as one atomic unit on ``session``.

    Commits when the operation returns, rolls back on every other exit
    path (engine errors, storage errors, cancellation) and re-raises.
    Storage failures, including a failed commit, surface as InternalError.
    Nothing is retried.

    Args:
        session: Request-scoped session
        operation: Coroutine function receiving the session

    Returns:
        Whatever ``operation`` returned
    """
    try:
        result = await operation(session)
        await session.commit()
    except LedgerError:
        await session.rollback()
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Transaction rolled back: {e}")
        raise InternalError(f"storage failure: {e}") from e
    except BaseException:
        await session.rollback()
        raise
    return result
