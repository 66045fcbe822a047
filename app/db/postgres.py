"""PostgreSQL access for the orchestration service.

Two ways in:
  - get_async_session(): one session per API request, used by the
    X-API-Key tenant lookup in app.api.deps.
  - async_session_factory: handed to SessionStore, CustomerDirectory and
    TeamAssignmentService at startup; each opens a short session per
    read or write, outside any request.

Driver failures surface as DatabaseConnectionError (HTTP 503).
"""

from collections.abc import AsyncGenerator

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings
from app.core.exceptions import DatabaseConnectionError

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base for tenants, customers, sessions, tasks and team agents."""


engine: AsyncEngine = create_async_engine(
    settings.postgres_url,
    pool_size=settings.postgres_pool_size,
    max_overflow=settings.postgres_max_overflow,
    pool_pre_ping=True,
)

# expire_on_commit=False: services hand ORM rows back after the session closes.
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; rolled back if the handler fails."""
    try:
        async with async_session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("request_db_session_failed", error=str(e))
                raise DatabaseConnectionError(f"Database operation failed: {e}") from e
            except Exception:
                await session.rollback()
                raise
    except SQLAlchemyError as e:
        logger.error("request_db_connect_failed", error=str(e))
        raise DatabaseConnectionError(f"Database connection failed: {e}") from e


async def close_postgres() -> None:
    """Dispose of the engine's connection pool at shutdown."""
    logger.info("postgres_shutdown")
    await engine.dispose()
