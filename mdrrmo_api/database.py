"""
Database engine and session factory.

Production runs on MySQL through aiomysql; SQLite (aiosqlite) is supported
for local runs and tests. Services own commit and rollback; ``get_db`` only
hands out the session and discards whatever a failed request left open.

SECURITY:
- SQL echo is never enabled in production
- The connection string is never logged
"""

import logging
import time

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from mdrrmo_api.config import settings

logger = logging.getLogger(__name__)

SLOW_QUERY_THRESHOLD_MS = 500


def is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _engine_options(url: str) -> dict:
    if is_sqlite(url):
        return {}
    return {
        "pool_size": 20,
        "max_overflow": 10,
        "pool_recycle": 3600,  # MySQL drops idle connections after wait_timeout
        "pool_pre_ping": True,
    }


def enable_sqlite_foreign_keys(sync_engine) -> None:
    """SQLite ignores FOREIGN KEY clauses unless asked per connection."""

    @event.listens_for(sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def install_slow_query_log(sync_engine, threshold_ms: int = SLOW_QUERY_THRESHOLD_MS) -> None:
    """Warn about statements slower than ``threshold_ms``; parameters are never logged."""

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _start(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.monotonic())

    @event.listens_for(sync_engine, "after_cursor_execute")
    def _finish(conn, cursor, statement, parameters, context, executemany):
        starts = conn.info.get("query_start_time")
        if not starts:
            return
        elapsed_ms = (time.monotonic() - starts.pop()) * 1000
        if elapsed_ms >= threshold_ms:
            logger.warning(
                "Slow query (%.0fms): %s", elapsed_ms, statement[:200] + ("..." if len(statement) > 200 else "")
            )


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.sqlalchemy_echo,
    **_engine_options(settings.DATABASE_URL),
)
if is_sqlite(settings.DATABASE_URL):
    enable_sqlite_foreign_keys(engine.sync_engine)
install_slow_query_log(engine.sync_engine)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    """FastAPI dependency yielding one session per request."""
    session = async_session_maker()
    try:
        yield session
    finally:
        if session.in_transaction():
            await session.rollback()
        await session.close()


async def init_db():
    """Create missing tables (development convenience; production uses alembic)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
