"""
Balance store — the only code allowed to change an account's balance.

It handles:
  - Creating an account's balance row exactly once (initialize)
  - Reading the current balance (get)
  - Conditionally debiting credits (debit_if_sufficient)
  - Crediting credits up to the balance ceiling (credit)

Atomicity:
  Every mutation is ONE SQL statement evaluated by the database:

      UPDATE credit_balances
         SET balance = balance - :amount, ...
       WHERE account_id = :id AND balance >= :amount
      RETURNING balance

  The balance check lives in the WHERE clause, so there is no window in
  which two concurrent debits can both pass a check against the same stale
  balance. If no row comes back, nothing was changed. A separate read only
  happens afterwards, to tell a missing account from a short balance.

Initialization race:
  initialize() uses INSERT ... ON CONFLICT DO NOTHING. When several callers
  create the same new account at once, exactly one INSERT returns a row; the
  others see the winner's row and report created=False, so the starting
  grant is recorded exactly once.

This module does NOT write ledger rows. Pairing each mutation with its
transaction record is the facade's job (services/ledger.py).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.exceptions import FailureReason, InvalidAmountError
from credit_ledger.models.credit_balance import MAX_CREDIT_AMOUNT, CreditBalance

logger = logging.getLogger(__name__)

# Dialect-specific INSERT constructs that support ON CONFLICT DO NOTHING
_UPSERT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


@dataclass(frozen=True)
class BalanceMutation:
    """Outcome of debit_if_sufficient / credit."""
    ok: bool
    new_balance: int | None = None
    reason: FailureReason | None = None

    @classmethod
    def success(cls, new_balance: int) -> "BalanceMutation":
        return cls(ok=True, new_balance=new_balance)

    @classmethod
    def failure(cls, reason: FailureReason) -> "BalanceMutation":
        return cls(ok=False, reason=reason)


def _is_whole_number(value) -> bool:
    # bool is an int subclass, but True is not a credit amount
    return isinstance(value, int) and not isinstance(value, bool)


def _require_amount(amount, minimum: int) -> None:
    if not _is_whole_number(amount) or not minimum <= amount <= MAX_CREDIT_AMOUNT:
        raise InvalidAmountError(amount)


def require_positive_amount(amount) -> None:
    """Raise InvalidAmountError unless `amount` is an integer in 1..MAX_CREDIT_AMOUNT."""
    _require_amount(amount, 1)


def require_non_negative_amount(amount) -> None:
    """Raise InvalidAmountError unless `amount` is an integer in 0..MAX_CREDIT_AMOUNT."""
    _require_amount(amount, 0)


def _upsert_insert(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    try:
        return _UPSERT_INSERTS[dialect]
    except KeyError:
        raise RuntimeError(
            f"Unsupported database dialect for the balance store: {dialect}"
        ) from None


async def initialize(
    db: AsyncSession,
    account_id: str,
    starting_balance: int,
) -> tuple[CreditBalance, bool]:
    """
    Create the account's balance row if it does not exist yet.

    Args:
        db: Database session.
        account_id: Opaque account id from the identity system.
        starting_balance: Balance given to a newly created row.

    Returns:
        (balance_row, created). `created` is True only for the caller whose
        INSERT actually created the row. That caller, and only that caller,
        must record the INITIAL transaction.

    Raises:
        InvalidAmountError: If starting_balance is not an integer in
            0..MAX_CREDIT_AMOUNT.
    """
    require_non_negative_amount(starting_balance)

    now = datetime.now(timezone.utc)
    insert = _upsert_insert(db)
    stmt = (
        insert(CreditBalance)
        .values(
            account_id=account_id,
            balance=starting_balance,
            total_consumed=0,
            created_at=now,
            last_updated=now,
        )
        .on_conflict_do_nothing(index_elements=["account_id"])
        .returning(CreditBalance.account_id)
    )
    result = await db.execute(stmt)
    created = result.scalar_one_or_none() is not None

    balance = await get(db, account_id)
    if created:
        logger.debug("Created balance row for account %s", account_id)
    return balance, created


async def get(db: AsyncSession, account_id: str) -> CreditBalance | None:
    """
    Read the account's balance row, or None if it has never been created.

    populate_existing refreshes any copy already in the session, so the
    result reflects the latest UPDATE even though the mutations below
    bypass the identity map.
    """
    result = await db.execute(
        select(CreditBalance)
        .where(CreditBalance.account_id == account_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _exists(db: AsyncSession, account_id: str) -> bool:
    found = await db.scalar(
        select(CreditBalance.account_id).where(CreditBalance.account_id == account_id)
    )
    return found is not None


async def debit_if_sufficient(
    db: AsyncSession,
    account_id: str,
    amount: int,
) -> BalanceMutation:
    """
    Atomically subtract `amount` if, and only if, the balance covers it.

    Decrements balance and increments total_consumed in the same
    statement. On failure nothing is modified.

    Returns:
        BalanceMutation with new_balance on success, or reason
        INSUFFICIENT_FUNDS / NOT_FOUND.

    Raises:
        InvalidAmountError: If amount is not an integer in 1..MAX_CREDIT_AMOUNT.
    """
    require_positive_amount(amount)

    result = await db.execute(
        update(CreditBalance)
        .where(CreditBalance.account_id == account_id)
        .where(CreditBalance.balance >= amount)
        .values(
            balance=CreditBalance.balance - amount,
            total_consumed=CreditBalance.total_consumed + amount,
            last_updated=datetime.now(timezone.utc),
        )
        .returning(CreditBalance.balance)
        .execution_options(synchronize_session=False)
    )
    new_balance = result.scalar_one_or_none()

    if new_balance is None:
        if await _exists(db, account_id):
            return BalanceMutation.failure(FailureReason.INSUFFICIENT_FUNDS)
        return BalanceMutation.failure(FailureReason.NOT_FOUND)

    return BalanceMutation.success(new_balance)


async def credit(
    db: AsyncSession,
    account_id: str,
    amount: int,
) -> BalanceMutation:
    """
    Add `amount` to the balance (purchases, bonuses, refunds).

    The only condition is headroom: the new balance may not exceed
    MAX_CREDIT_AMOUNT. total_consumed is untouched: a refund gives credits
    back, it does not undo consumption history.

    Returns:
        BalanceMutation with new_balance, or reason NOT_FOUND /
        BALANCE_LIMIT_EXCEEDED.

    Raises:
        InvalidAmountError: If amount is not an integer in 1..MAX_CREDIT_AMOUNT.
    """
    require_positive_amount(amount)

    result = await db.execute(
        update(CreditBalance)
        .where(CreditBalance.account_id == account_id)
        .where(CreditBalance.balance <= MAX_CREDIT_AMOUNT - amount)
        .values(
            balance=CreditBalance.balance + amount,
            last_updated=datetime.now(timezone.utc),
        )
        .returning(CreditBalance.balance)
        .execution_options(synchronize_session=False)
    )
    new_balance = result.scalar_one_or_none()

    if new_balance is None:
        if await _exists(db, account_id):
            return BalanceMutation.failure(FailureReason.BALANCE_LIMIT_EXCEEDED)
        return BalanceMutation.failure(FailureReason.NOT_FOUND)
    return BalanceMutation.success(new_balance)
