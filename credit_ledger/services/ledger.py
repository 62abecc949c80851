"""
Ledger facade — the public entry point for everything credit related.

Every balance change is expressed as "apply the delta in the balance
store, then append the same delta to the transaction ledger", and the two
writes run inside ONE savepoint (begin_nested). Either both persist or
neither does:

  - If the balance mutation is rejected (not found / insufficient), no
    ledger row is appended and the caller gets a typed failure result.
  - If the database fails anywhere inside the pair, the savepoint is rolled
    back, taking the balance change with the ledger row, and
    StorageFailureError is raised.

The enclosing transaction belongs to the caller: get_db() commits it at the
end of an HTTP request, and direct callers commit it themselves.

Business outcomes (NOT_FOUND, INSUFFICIENT_FUNDS) are returned, never
raised. Nothing here retries; spend() in particular is not idempotent, so a
retry that succeeds charges again.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.config import settings
from credit_ledger.exceptions import (
    FailureReason,
    InvalidTransactionKindError,
    StorageFailureError,
)
from credit_ledger.models.credit_balance import CreditBalance
from credit_ledger.models.credit_transaction import (
    GRANT_KINDS,
    CreditTransaction,
    TransactionKind,
)
from credit_ledger.services import balance_store, transaction_ledger
from credit_ledger.services.transaction_ledger import (
    LedgerAudit,
    LedgerStats,
    TransactionOrder,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of spend() / grant()."""
    ok: bool
    new_balance: int | None = None
    error: FailureReason | None = None

    @classmethod
    def success(cls, new_balance: int) -> "LedgerResult":
        return cls(ok=True, new_balance=new_balance)

    @classmethod
    def failure(cls, error: FailureReason) -> "LedgerResult":
        return cls(ok=False, error=error)


async def ensure_account(
    db: AsyncSession,
    account_id: str,
    starting_balance: int | None = None,
) -> CreditBalance:
    """
    Make sure the account has a balance row; create it on first use.

    Only the call that actually creates the row records the INITIAL
    transaction, so any number of concurrent calls grant the starting
    balance exactly once. Every account therefore has exactly one INITIAL
    row, which is also the record of when it was created.

    Args:
        db: Database session.
        account_id: Opaque account id.
        starting_balance: Defaults to settings.STARTING_BALANCE; at least 1.

    Returns:
        The (new or existing) CreditBalance.

    Raises:
        InvalidAmountError: If starting_balance is not a positive integer.
        StorageFailureError: If the database fails; nothing is created.
    """
    if starting_balance is None:
        starting_balance = settings.STARTING_BALANCE
    balance_store.require_positive_amount(starting_balance)

    try:
        async with db.begin_nested():
            balance, created = await balance_store.initialize(db, account_id, starting_balance)
            if created:
                await transaction_ledger.append(
                    db,
                    account_id,
                    amount=starting_balance,
                    balance_after=starting_balance,
                    kind=TransactionKind.INITIAL,
                    description=f"Welcome bonus - {starting_balance} free credits",
                )
    except SQLAlchemyError as exc:
        logger.exception("Could not initialize credits for account %s", account_id)
        raise StorageFailureError("ensure_account") from exc

    if created:
        logger.info(
            "Initialized account %s with %s credits", account_id, starting_balance
        )
    return balance


async def has_sufficient(db: AsyncSession, account_id: str, required: int = 1) -> bool:
    """
    Whether the account could spend `required` credits right now.

    False (not an error) when the account does not exist. Any existing
    account can afford required=0. This is advisory only; spend() re-checks
    atomically.

    Raises:
        InvalidAmountError: If required is negative or not an integer.
    """
    balance_store.require_non_negative_amount(required)
    try:
        balance = await balance_store.get(db, account_id)
    except SQLAlchemyError as exc:
        logger.exception("Could not read credits for account %s", account_id)
        raise StorageFailureError("has_sufficient") from exc
    return balance is not None and balance.balance >= required


async def spend(
    db: AsyncSession,
    account_id: str,
    amount: int,
    description: str | None = "Content generation",
) -> LedgerResult:
    """
    Debit `amount` credits and record a DEBIT transaction, atomically.

    Returns:
        LedgerResult with new_balance, or error INSUFFICIENT_FUNDS /
        NOT_FOUND. On failure no transaction is recorded and the caller's
        billable action must not proceed.

    Raises:
        InvalidAmountError: If amount is not a positive integer.
        StorageFailureError: If the database fails; nothing is debited.
    """
    try:
        async with db.begin_nested():
            mutation = await balance_store.debit_if_sufficient(db, account_id, amount)
            if mutation.ok:
                await transaction_ledger.append(
                    db,
                    account_id,
                    amount=-amount,
                    balance_after=mutation.new_balance,
                    kind=TransactionKind.DEBIT,
                    description=description,
                )
    except SQLAlchemyError as exc:
        logger.exception("Spend of %s credits failed for account %s", amount, account_id)
        raise StorageFailureError("spend") from exc

    if not mutation.ok:
        logger.info(
            "Spend of %s credits rejected for account %s: %s",
            amount, account_id, mutation.reason.value,
        )
        return LedgerResult.failure(mutation.reason)

    logger.info(
        "Account %s spent %s credits (balance %s)", account_id, amount, mutation.new_balance
    )
    return LedgerResult.success(mutation.new_balance)


async def grant(
    db: AsyncSession,
    account_id: str,
    amount: int,
    kind: TransactionKind | str = TransactionKind.PURCHASE,
    description: str | None = "Credits added",
) -> LedgerResult:
    """
    Credit `amount` credits and record a matching transaction, atomically.

    Args:
        kind: PURCHASE, BONUS or REFUND.

    Returns:
        LedgerResult with new_balance, or error NOT_FOUND /
        BALANCE_LIMIT_EXCEEDED.

    Raises:
        InvalidAmountError: If amount is not a positive integer.
        InvalidTransactionKindError: If kind is not a grant kind.
        StorageFailureError: If the database fails; nothing is credited.
    """
    kind = transaction_ledger.coerce_kind(kind)
    if kind not in GRANT_KINDS:
        raise InvalidTransactionKindError(kind.value, allowed=GRANT_KINDS)

    try:
        async with db.begin_nested():
            mutation = await balance_store.credit(db, account_id, amount)
            if mutation.ok:
                await transaction_ledger.append(
                    db,
                    account_id,
                    amount=amount,
                    balance_after=mutation.new_balance,
                    kind=kind,
                    description=description,
                )
    except SQLAlchemyError as exc:
        logger.exception(
            "Grant of %s %s credits failed for account %s", amount, kind.value, account_id
        )
        raise StorageFailureError("grant") from exc

    if not mutation.ok:
        logger.info(
            "Grant of %s credits rejected for account %s: %s",
            amount, account_id, mutation.reason.value,
        )
        return LedgerResult.failure(mutation.reason)

    logger.info(
        "Account %s granted %s %s credits (balance %s)",
        account_id, amount, kind.value, mutation.new_balance,
    )
    return LedgerResult.success(mutation.new_balance)


# ---------------------------------------------------------------------------
# Read pass-throughs (used by the presentation endpoints)
# ---------------------------------------------------------------------------

async def _read(operation: str, coro):
    try:
        return await coro
    except SQLAlchemyError as exc:
        logger.exception("Read %s failed", operation)
        raise StorageFailureError(operation) from exc


async def get_balance(db: AsyncSession, account_id: str) -> CreditBalance | None:
    """Current balance row, or None if the account was never initialized."""
    logger.debug("Reading balance for account %s", account_id)
    return await _read("get_balance", balance_store.get(db, account_id))


async def get_history(
    db: AsyncSession,
    account_id: str,
    limit: int | None = None,
    order: TransactionOrder | str = TransactionOrder.NEWEST_FIRST,
    before_id: int | None = None,
    after_id: int | None = None,
) -> list[CreditTransaction]:
    """One page of transaction history (see transaction_ledger.list_transactions)."""
    return await _read(
        "get_history",
        transaction_ledger.list_transactions(
            db, account_id, limit=limit, order=order, before_id=before_id, after_id=after_id
        ),
    )


async def get_stats(db: AsyncSession, account_id: str) -> LedgerStats:
    return await _read("get_stats", transaction_ledger.stats(db, account_id))


async def audit(db: AsyncSession, account_id: str) -> LedgerAudit:
    return await _read("audit", transaction_ledger.verify(db, account_id))
