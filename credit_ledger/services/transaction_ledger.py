"""
Transaction ledger — the append-only record of every balance change.

This module handles:
  - Appending transaction records (never updating or deleting them)
  - Paginated history, newest or oldest first, with an id cursor
  - Streaming the full history for replays
  - Aggregate statistics cross-checked against the balance row
  - Replay verification of the whole audit trail

By the time append() is called, the facade has already decided the
mutation is valid, so append never rejects anything on business grounds.
It fails only when the database does.

Ordering:
  History is ordered by the integer transaction id, not by created_at.
  Ids strictly increase in insertion order; two rows written in the same
  millisecond still sort correctly.

Reads here look at the balance TABLE directly rather than going through
services/balance_store.py, so the ledger and the store stay independent.
"""

import enum
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.config import settings
from credit_ledger.exceptions import InvalidAmountError, InvalidTransactionKindError
from credit_ledger.models.credit_balance import MAX_CREDIT_AMOUNT, CreditBalance
from credit_ledger.models.credit_transaction import CreditTransaction, TransactionKind

logger = logging.getLogger(__name__)


class TransactionOrder(str, enum.Enum):
    NEWEST_FIRST = "newest_first"
    OLDEST_FIRST = "oldest_first"


@dataclass(frozen=True)
class LedgerStats:
    """Aggregates over an account's ledger, plus the balance row they should agree with."""
    account_id: str
    total_earned: int
    total_used: int
    transaction_count: int
    current_balance: int
    total_consumed: int
    consistent: bool


@dataclass(frozen=True)
class LedgerAudit:
    """Result of replaying an account's ledger from its first row."""
    account_id: str
    transaction_count: int
    replayed_balance: int
    replayed_total_consumed: int
    stored_balance: int | None
    stored_total_consumed: int | None
    first_mismatch_id: int | None
    consistent: bool


def coerce_kind(kind) -> TransactionKind:
    """Turn a TransactionKind or its string value into a TransactionKind."""
    if isinstance(kind, TransactionKind):
        return kind
    try:
        return TransactionKind(kind)
    except ValueError:
        raise InvalidTransactionKindError(kind) from None


async def _balance_row(db: AsyncSession, account_id: str) -> CreditBalance | None:
    result = await db.execute(
        select(CreditBalance)
        .where(CreditBalance.account_id == account_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def append(
    db: AsyncSession,
    account_id: str,
    amount: int,
    balance_after: int,
    kind: TransactionKind | str,
    description: str | None = None,
) -> CreditTransaction:
    """
    Insert one transaction record and flush it so its id is assigned.

    Args:
        db: Database session.
        account_id: Owner of the balance that changed.
        amount: Signed delta (+ credit, - debit). Never zero.
        balance_after: The balance right after the change.
        kind: TransactionKind (or its string value).
        description: Optional free-text annotation.

    Returns:
        The persisted CreditTransaction.

    Raises:
        InvalidAmountError: If amount is zero, not an integer, or larger
            than MAX_CREDIT_AMOUNT, or balance_after is out of range.
        InvalidTransactionKindError: If kind is not a TransactionKind.
    """
    if (
        isinstance(amount, bool)
        or not isinstance(amount, int)
        or not 0 < abs(amount) <= MAX_CREDIT_AMOUNT
    ):
        raise InvalidAmountError(amount)
    if (
        isinstance(balance_after, bool)
        or not isinstance(balance_after, int)
        or not 0 <= balance_after <= MAX_CREDIT_AMOUNT
    ):
        raise InvalidAmountError(balance_after)

    txn = CreditTransaction(
        account_id=account_id,
        amount=amount,
        balance_after=balance_after,
        kind=coerce_kind(kind),
        description=description,
    )
    db.add(txn)
    await db.flush()
    return txn


async def list_transactions(
    db: AsyncSession,
    account_id: str,
    limit: int | None = None,
    order: TransactionOrder | str = TransactionOrder.NEWEST_FIRST,
    before_id: int | None = None,
    after_id: int | None = None,
) -> list[CreditTransaction]:
    """
    One page of an account's history.

    Args:
        db: Database session.
        account_id: The account to list.
        limit: Page size; defaults to DEFAULT_PAGE_SIZE and is clamped to
            1..MAX_PAGE_SIZE.
        order: newest_first (default) or oldest_first.
        before_id: Only rows with a smaller id (next page when newest first).
        after_id: Only rows with a larger id (next page when oldest first).

    Returns:
        A list of at most `limit` CreditTransaction rows.
    """
    if limit is None:
        limit = settings.DEFAULT_PAGE_SIZE
    limit = max(1, min(limit, settings.MAX_PAGE_SIZE))
    order = TransactionOrder(order)

    query = select(CreditTransaction).where(CreditTransaction.account_id == account_id)
    if before_id is not None:
        query = query.where(CreditTransaction.id < before_id)
    if after_id is not None:
        query = query.where(CreditTransaction.id > after_id)

    if order is TransactionOrder.NEWEST_FIRST:
        query = query.order_by(CreditTransaction.id.desc())
    else:
        query = query.order_by(CreditTransaction.id.asc())

    result = await db.execute(query.limit(limit))
    return list(result.scalars().all())


async def iter_transactions(
    db: AsyncSession,
    account_id: str,
    order: TransactionOrder | str = TransactionOrder.OLDEST_FIRST,
    batch_size: int = 500,
) -> AsyncIterator[CreditTransaction]:
    """Stream an account's full history without loading it all at once."""
    order = TransactionOrder(order)
    ordering = (
        CreditTransaction.id.asc()
        if order is TransactionOrder.OLDEST_FIRST
        else CreditTransaction.id.desc()
    )
    result = await db.stream_scalars(
        select(CreditTransaction)
        .where(CreditTransaction.account_id == account_id)
        .order_by(ordering)
        .execution_options(yield_per=batch_size)
    )
    async for txn in result:
        yield txn


async def stats(db: AsyncSession, account_id: str) -> LedgerStats:
    """
    Aggregate an account's ledger.

    total_earned is the sum of positive amounts and total_used the sum of
    the absolute negative amounts. `consistent` is True when the ledger
    agrees with the balance row: earned - used == balance and
    used == total_consumed. An account with no balance row and no ledger
    rows is trivially consistent.
    """
    totals = await db.execute(
        select(
            func.coalesce(
                func.sum(case((CreditTransaction.amount > 0, CreditTransaction.amount), else_=0)),
                0,
            ),
            func.coalesce(
                func.sum(case((CreditTransaction.amount < 0, -CreditTransaction.amount), else_=0)),
                0,
            ),
            func.count(CreditTransaction.id),
        ).where(CreditTransaction.account_id == account_id)
    )
    total_earned, total_used, transaction_count = totals.one()

    row = await _balance_row(db, account_id)
    if row is None:
        current_balance, total_consumed = 0, 0
        consistent = transaction_count == 0
    else:
        current_balance, total_consumed = row.balance, row.total_consumed
        consistent = (
            total_earned - total_used == current_balance
            and total_used == total_consumed
        )

    if not consistent:
        logger.warning(
            "Ledger for account %s disagrees with its balance row "
            "(earned=%s used=%s balance=%s consumed=%s)",
            account_id, total_earned, total_used, current_balance, total_consumed,
        )

    return LedgerStats(
        account_id=account_id,
        total_earned=int(total_earned),
        total_used=int(total_used),
        transaction_count=int(transaction_count),
        current_balance=current_balance,
        total_consumed=total_consumed,
        consistent=consistent,
    )


async def verify(db: AsyncSession, account_id: str) -> LedgerAudit:
    """
    Replay the ledger and check it against itself and the balance row.

    Walking rows in id order, the running sum of `amount` must equal each
    row's balance_after. At the end the running sum must equal the stored
    balance, and the sum of debits must equal total_consumed.

    Returns:
        LedgerAudit; first_mismatch_id names the first row whose
        balance_after disagrees with the replay, if any.
    """
    row = await _balance_row(db, account_id)

    running = 0
    consumed = 0
    count = 0
    first_mismatch_id = None
    async for txn in iter_transactions(db, account_id, TransactionOrder.OLDEST_FIRST):
        count += 1
        running += txn.amount
        if txn.amount < 0:
            consumed -= txn.amount
        if first_mismatch_id is None and txn.balance_after != running:
            first_mismatch_id = txn.id

    if row is None:
        consistent = count == 0
    else:
        consistent = (
            first_mismatch_id is None
            and running == row.balance
            and consumed == row.total_consumed
        )

    if not consistent:
        logger.warning(
            "Replay of account %s does not match (replayed=%s stored=%s first_mismatch=%s)",
            account_id, running, row.balance if row else None, first_mismatch_id,
        )

    return LedgerAudit(
        account_id=account_id,
        transaction_count=count,
        replayed_balance=running,
        replayed_total_consumed=consumed,
        stored_balance=row.balance if row else None,
        stored_total_consumed=row.total_consumed if row else None,
        first_mismatch_id=first_mismatch_id,
        consistent=consistent,
    )
