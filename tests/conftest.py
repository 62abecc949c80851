"""
Test fixtures for the Credit Ledger test suite.

This module provides shared fixtures used across all test files:

  - db_engine / session_factory / db_session: A fresh SQLite database for each test
  - client: Async HTTP test client (no credentials)
  - auth_headers: Builds Bearer headers for any account id
  - member_headers: Bearer headers for a default test account
  - internal_headers: X-Internal-Token headers for the billing endpoints

Key design decisions:
  - Each test gets its own SQLite FILE under tmp_path, not an in-memory
    database. An in-memory aiosqlite database shares one connection between
    all sessions, which would hide exactly the cross-session races the
    concurrency tests are about.
  - The engine comes from create_engine_for(), so tests run with the same
    BEGIN IMMEDIATE / SAVEPOINT handling as the application.
  - We override FastAPI's get_db dependency to use the test database; the
    override keeps get_db's commit/rollback rules.
  - Every session starts a write transaction on SQLite. Tests that mix the
    HTTP client with direct sessions must commit or close the direct
    session before the next request.
"""

import os

# Required settings must exist before credit_ledger.config is imported
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("INTERNAL_TOKEN", "test-internal-token")
os.environ.setdefault("DB_BUSY_TIMEOUT_SECONDS", "10")

import pytest_asyncio  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from credit_ledger.config import settings  # noqa: E402
from credit_ledger.database import Base, create_engine_for, get_db  # noqa: E402
from credit_ledger.exceptions import (  # noqa: E402
    LedgerError,
    LedgerImmutableError,
    StorageFailureError,
)
from credit_ledger.main import app  # noqa: E402
from credit_ledger.security import create_access_token  # noqa: E402

DEFAULT_ACCOUNT_ID = "acct-test-member"


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create a fresh file-backed engine with all tables for each test."""
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'credits.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    """Session factory bound to the test engine, for tests that need several sessions."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory):
    """
    Async HTTP test client with the test database injected.

    This overrides the get_db dependency so all requests hit the
    per-test database instead of the real one.
    """

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except (StorageFailureError, LedgerImmutableError):
                await session.rollback()
                raise
            except LedgerError:
                await session.commit()
                raise
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def auth_headers():
    """Return a function building Bearer headers for an account id."""

    def _build(account_id: str = DEFAULT_ACCOUNT_ID) -> dict:
        token = create_access_token({"sub": account_id})
        return {"Authorization": f"Bearer {token}"}

    return _build


@pytest_asyncio.fixture
async def member_headers(auth_headers):
    """Bearer headers for the default test account."""
    return auth_headers(DEFAULT_ACCOUNT_ID)


@pytest_asyncio.fixture
async def internal_headers():
    """Headers the billing service sends."""
    return {"X-Internal-Token": settings.INTERNAL_TOKEN}
