"""
Database connection and session management.
Uses SQLAlchemy 2.0 async pattern.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from orderflow.config import get_settings

settings = get_settings()


def configure_sqlite_engine(engine: AsyncEngine, busy_timeout_ms: int = 5000) -> None:
    """
    Make an aiosqlite engine safe for concurrent writers.

    The driver's implicit BEGIN is disabled and every transaction is opened
    with BEGIN IMMEDIATE, so writers queue on the busy timeout instead of
    failing on lock upgrade, and SAVEPOINTs behave.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an engine with the options appropriate for its backend."""
    if database_url.startswith("sqlite"):
        # NullPool: every session gets its own connection, so concurrent
        # sessions really do contend for the write lock.
        sqlite_engine = create_async_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=NullPool,
        )
        configure_sqlite_engine(sqlite_engine, settings.sqlite_busy_timeout_ms)
        return sqlite_engine

    # PostgreSQL settings with connection pooling
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.database_url, echo=settings.debug)

# Session factory
async_session_maker = build_session_maker(engine)


async def init_db(bind: AsyncEngine = engine) -> None:
    """Initialize database tables."""
    # Import Base from kernel models to ensure all models are registered
    from orderflow.kernel.models import Base

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
