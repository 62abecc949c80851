"""
Database engine, session management, and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - create_engine_for(): Builds an async engine, adding the SQLite hooks below
  - engine: The application's async engine
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - get_db(): FastAPI dependency that provides a session per request

SQLite transaction handling:
  The sqlite3 driver (which aiosqlite wraps) manages BEGIN on its own and
  gets SAVEPOINT wrong. We switch that off on connect and emit our own
  BEGIN IMMEDIATE whenever SQLAlchemy starts a transaction. IMMEDIATE takes
  the write lock up front, so two sessions can never both read a balance
  under a shared lock and then deadlock upgrading to write. The second
  writer simply waits (up to DB_BUSY_TIMEOUT_SECONDS) for the first to
  commit. On PostgreSQL none of this applies: the conditional UPDATE takes
  a row lock and re-checks its WHERE clause after waiting.

Session lifecycle:
  Each API request gets its own session via get_db(). The session commits
  on success and rolls back on faults, ensuring data consistency.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from credit_ledger.config import settings
from credit_ledger.exceptions import LedgerError, LedgerImmutableError, StorageFailureError


def _install_sqlite_hooks(engine: AsyncEngine) -> None:
    """Take over transaction control from the sqlite3 driver."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Disable the driver's implicit BEGIN so SAVEPOINT behaves
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for `url`.

    SQLite URLs get a busy timeout and the transaction hooks described in
    the module docstring; every other backend is used as-is.
    """
    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            echo=echo,
            connect_args={"timeout": settings.DB_BUSY_TIMEOUT_SECONDS},
        )
        _install_sqlite_hooks(engine)
        return engine
    return create_async_engine(url, echo=echo)


# echo=True in debug mode logs all SQL statements
engine = create_engine_for(settings.DATABASE_URL, echo=settings.DEBUG)

# expire_on_commit=False prevents lazy-load errors after commit in async code
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


async def get_db():
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/credits")
        async def get_credits(db: AsyncSession = Depends(get_db)):
            ...

    The session is committed on success and rolled back on faults, then
    closed when the request completes.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except (StorageFailureError, LedgerImmutableError):
            await session.rollback()
            raise
        except LedgerError:
            # Business rejections (e.g. insufficient credits): whatever the
            # request completed before the rejection, such as creating the
            # account, is a whole unit of work and is kept.
            await session.commit()
            raise
        except Exception:
            await session.rollback()
            raise
