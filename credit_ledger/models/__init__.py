"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata knows every table before create_all runs
  2. Other modules can import from credit_ledger.models directly
"""

from credit_ledger.models.credit_balance import MAX_CREDIT_AMOUNT, CreditBalance  # noqa: F401
from credit_ledger.models.credit_transaction import (  # noqa: F401
    GRANT_KINDS,
    MAX_TRANSACTION_ID,
    CreditTransaction,
    TransactionKind,
)
