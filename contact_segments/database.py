"""
Database Configuration

Segment evaluation is read-heavy: every preview, count and members page is
one statement over the contacts table. Statements slower than
SLOW_QUERY_THRESHOLD_MS are logged with the organization they ran for and
the request that issued them, never with their bound values.

SECURITY:
- SQLAlchemy echo disabled in production to prevent contact data leakage
- Connection string never logged
"""

import logging
import time
from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from contact_segments.config import settings
from contact_segments.middleware.correlation import get_request_id

logger = logging.getLogger(__name__)

# Execution option naming the tenant a statement runs for
ORGANIZATION_OPTION = "organization_id"


def build_engine(
    url: str,
    slow_query_threshold_ms: Optional[int] = None,
    **engine_kwargs,
) -> AsyncEngine:
    """Create an async engine with slow-query logging attached."""
    threshold_ms = (
        settings.SLOW_QUERY_THRESHOLD_MS if slow_query_threshold_ms is None else slow_query_threshold_ms
    )
    engine_kwargs.setdefault("echo", settings.sqlalchemy_echo)
    engine = create_async_engine(url, **engine_kwargs)

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def start_timer(conn, cursor, statement, parameters, context, executemany):
        conn.info["query_start_time"] = time.monotonic()

    @event.listens_for(engine.sync_engine, "after_cursor_execute")
    def log_slow_query(conn, cursor, statement, parameters, context, executemany):
        start = conn.info.pop("query_start_time", None)
        if start is None:
            return
        duration_ms = (time.monotonic() - start) * 1000
        if duration_ms < threshold_ms:
            return
        options = context.execution_options if context is not None else {}
        logger.warning(
            "Slow query (%.0fms) organization=%s request=%s: %s",
            duration_ms,
            options.get(ORGANIZATION_OPTION, "-"),
            get_request_id() or "-",
            " ".join(statement.split())[:200],
        )

    return engine


engine = build_engine(
    settings.DATABASE_URL,
    pool_size=settings.DATABASE_POOL_SIZE,
    max_overflow=settings.DATABASE_MAX_OVERFLOW,
    pool_recycle=3600,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


async def get_db() -> AsyncSession:
    """Request-scoped session. Services commit their own writes."""
    session = async_session_maker()
    try:
        yield session
    finally:
        await session.close()


async def init_db():
    """Create the organization, contact and segment tables if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
