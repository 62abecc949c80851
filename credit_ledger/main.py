"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Logging — configured once, before anything logs
  2. Lifespan manager — creates tables on startup, disposes the engine on shutdown
  3. CORS middleware — allows the presentation frontend to call the read endpoints
  4. Exception handlers — maps ledger errors to HTTP responses
  5. Router registration — /credits (account owner) and /internal (billing service)

Running locally:
    uvicorn credit_ledger.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import make_url

from credit_ledger.config import settings
from credit_ledger.database import engine, Base
from credit_ledger.exceptions import register_exception_handlers
from credit_ledger import models  # noqa: F401  (registers every table on Base.metadata)
from credit_ledger.logging_config import setup_logging
from credit_ledger.routers import credits, internal

setup_logging()
logger = logging.getLogger(__name__)


def _ensure_sqlite_directory(url: str) -> None:
    """SQLite will not create the directory holding its database file."""
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database not in (None, "", ":memory:"):
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
      Creates all tables (and the ledger's append-only triggers) if they
      don't exist.

    Shutdown:
      Disposes of the database engine, closing all connections cleanly.
    """
    # --- Startup ---
    _ensure_sqlite_directory(settings.DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
    yield
    # --- Shutdown ---
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Credit balances with an append-only, auditable transaction ledger",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(credits.router, prefix="/credits", tags=["Credits"])
app.include_router(internal.router, prefix="/internal", tags=["Billing"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for load balancers and deployments."""
    return {"status": "ok", "version": settings.APP_VERSION}
