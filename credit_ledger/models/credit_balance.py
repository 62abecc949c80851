"""
CreditBalance model — the authoritative current balance of one account.

Each row has:
  - account_id: Opaque id owned by the external identity system
  - balance: Spendable credit units (integer, never negative)
  - total_consumed: Cumulative units ever debited (only ever grows)
  - last_updated: Timestamp of the most recent mutation

Balance management:
  Rows are mutated only by services/balance_store.py, and only through
  single conditional UPDATE statements evaluated by the database. There is
  never an application-level "read the balance, then decide" step.

  CHECK constraints at the database level keep the balance between 0 and
  MAX_CREDIT_AMOUNT. The conditional debit already guarantees this; the
  constraint is the last line of defense against any other write path.

Why integer credits?
  A credit is an indivisible unit of billable work. Fractional credits are
  not supported, so every amount is an exact integer.
"""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.database import Base

# Largest value a 32-bit INTEGER column holds (PostgreSQL); bounds every
# amount and every balance
MAX_CREDIT_AMOUNT = 2**31 - 1


class CreditBalance(Base):
    __tablename__ = "credit_balances"

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_balances_non_negative_balance"),
        CheckConstraint(
            f"balance <= {MAX_CREDIT_AMOUNT}",
            name="ck_credit_balances_balance_upper_bound",
        ),
        CheckConstraint(
            "total_consumed >= 0",
            name="ck_credit_balances_non_negative_consumed",
        ),
    )

    # Opaque foreign key into the identity system; never interpreted here
    account_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )

    balance: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # Only debit_if_sufficient increments this; lifetime totals can outgrow
    # MAX_CREDIT_AMOUNT, hence 64 bits
    total_consumed: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
