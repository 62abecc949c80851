"""
Logging setup for the Credit Ledger API.

Every module logs through `logging.getLogger(__name__)`; this configures the
root handler once, at application import, from settings.LOG_LEVEL.
"""

import logging

from credit_ledger.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger. Safe to call more than once."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
