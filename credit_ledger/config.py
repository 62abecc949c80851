"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. The .env file is gitignored; .env.example provides a safe template.

Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Usage:
    from credit_ledger.config import settings
    print(settings.STARTING_BALANCE)
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the Credit Ledger API.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Verifies the identity provider's JWTs
      - INTERNAL_TOKEN: Shared secret for the internal billing endpoints
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Credit Ledger API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # --- Database ---
    # SQLite for single-node deployments; use a postgresql+asyncpg:// URL in production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/credits.db"
    # How long a SQLite connection waits on another writer's lock
    DB_BUSY_TIMEOUT_SECONDS: float = 30.0

    # --- Authentication ---
    # REQUIRED: tokens are issued by the external identity provider, we only verify them
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # REQUIRED: the billing collaborator sends this in the X-Internal-Token header
    INTERNAL_TOKEN: str

    # --- Credits ---
    # Granted once, when an account's balance row is first created. Every
    # account gets an INITIAL transaction, so the grant is at least 1; the
    # upper bound is the balance column's maximum (MAX_CREDIT_AMOUNT)
    STARTING_BALANCE: int = Field(default=10, ge=1, le=2**31 - 1)
    DEFAULT_PAGE_SIZE: int = Field(default=20, ge=1)
    MAX_PAGE_SIZE: int = Field(default=100, ge=1)

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
