"""
CreditTransaction model — the append-only audit trail of balance changes.

Every change to a CreditBalance creates exactly one CreditTransaction in
the same database transaction. Rows are never updated or deleted.

Key fields:
  - id: Integer, strictly increasing in insertion order (the sort key for
    history queries; timestamps can tie, ids cannot)
  - amount: SIGNED delta; positive adds credits, negative spends them
  - balance_after: The balance immediately after this change
  - kind: One of the closed TransactionKind categories

Why a signed amount here when a bank ledger would store a positive amount
plus a direction? Because the audit property we care about is a replay:
summing `amount` in id order from zero must reproduce every
`balance_after` and the current balance. A signed delta makes that a
plain running sum.

Append-only enforcement happens twice:
  - ORM level: before_update / before_delete listeners raise
    LedgerImmutableError for any attempt through a session
  - Database level: triggers created together with the table reject
    UPDATE and DELETE statements (SQLite and PostgreSQL)
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    DDL,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.database import Base
from credit_ledger.exceptions import LedgerImmutableError


class TransactionKind(str, enum.Enum):
    """
    Why an account's balance changed.

    Inherits from str so the value serializes naturally to JSON and is
    stored as a plain string.
    """
    INITIAL = "INITIAL"      # Starting grant when the account is created
    DEBIT = "DEBIT"          # Consumption by a unit of billable work
    PURCHASE = "PURCHASE"    # Credits bought by the account owner
    BONUS = "BONUS"          # Promotional credits
    REFUND = "REFUND"        # Credits returned after a failed or disputed charge


# Ids live in a 32-bit INTEGER column on PostgreSQL
MAX_TRANSACTION_ID = 2**31 - 1

# Kinds that grant() may record; INITIAL and DEBIT belong to their own operations
GRANT_KINDS = frozenset({TransactionKind.PURCHASE, TransactionKind.BONUS, TransactionKind.REFUND})


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_credit_transactions_non_zero_amount"),
        CheckConstraint(
            "balance_after >= 0",
            name="ck_credit_transactions_non_negative_balance_after",
        ),
        # Never reuse an id, even for the highest row
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    account_id: Mapped[str] = mapped_column(
        ForeignKey("credit_balances.account_id"),
        nullable=False,
        index=True,
    )

    # Signed: +N for credits, -N for debits
    amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    balance_after: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    kind: Mapped[TransactionKind] = mapped_column(
        Enum(
            TransactionKind,
            name="credit_transaction_kind",
            native_enum=False,
            create_constraint=True,
            length=16,
        ),
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )


# ---------------------------------------------------------------------------
# Append-only guards
# ---------------------------------------------------------------------------

@event.listens_for(CreditTransaction, "before_update")
def _block_update(mapper, connection, target):
    raise LedgerImmutableError(target.id)


@event.listens_for(CreditTransaction, "before_delete")
def _block_delete(mapper, connection, target):
    raise LedgerImmutableError(target.id)


_table = CreditTransaction.__table__

for _statement in (
    """
    CREATE TRIGGER trg_credit_transactions_no_update
    BEFORE UPDATE ON credit_transactions
    BEGIN
        SELECT RAISE(ABORT, 'credit_transactions is append-only');
    END
    """,
    """
    CREATE TRIGGER trg_credit_transactions_no_delete
    BEFORE DELETE ON credit_transactions
    BEGIN
        SELECT RAISE(ABORT, 'credit_transactions is append-only');
    END
    """,
):
    event.listen(_table, "after_create", DDL(_statement).execute_if(dialect="sqlite"))

for _statement in (
    """
    CREATE OR REPLACE FUNCTION prevent_credit_transaction_mutation()
    RETURNS trigger AS $$
    BEGIN
        RAISE EXCEPTION 'credit_transactions is append-only';
    END;
    $$ LANGUAGE plpgsql
    """,
    """
    CREATE TRIGGER trg_credit_transactions_no_update
    BEFORE UPDATE ON credit_transactions
    FOR EACH ROW EXECUTE FUNCTION prevent_credit_transaction_mutation()
    """,
    """
    CREATE TRIGGER trg_credit_transactions_no_delete
    BEFORE DELETE ON credit_transactions
    FOR EACH ROW EXECUTE FUNCTION prevent_credit_transaction_mutation()
    """,
):
    event.listen(_table, "after_create", DDL(_statement).execute_if(dialect="postgresql"))
