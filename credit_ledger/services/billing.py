"""
Billing helper — charge credits for one unit of billable work.

The content-generation flow must use the ledger in a fixed order:

  1. ensure_account + has_sufficient BEFORE doing any work
  2. run the work
  3. spend ONLY after the work produced a usable result

If the work fails, nothing is charged. If the spend fails after the work
succeeded (another request drained the balance in between), the caller
gets ChargeFailedError and must show the user an error. It must not
retry the spend, because a retry that succeeds charges again.

The pre-check is committed before the work starts, so no database lock is
held while the (possibly slow) work runs. It is only advisory; the spend
re-checks atomically.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.exceptions import ChargeFailedError, InsufficientCreditsError
from credit_ledger.services import balance_store, ledger

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BilledResult(Generic[T]):
    result: T
    new_balance: int


async def charge_for_work(
    db: AsyncSession,
    account_id: str,
    work: Callable[[], Awaitable[T]],
    cost: int = 1,
    description: str | None = "Content generation",
) -> BilledResult[T]:
    """
    Run `work` and charge `cost` credits for it.

    Args:
        db: Database session; committed after the pre-check and after the spend.
        account_id: The account paying for the work.
        work: Zero-argument coroutine function producing the billable result.
        cost: Credits to charge.
        description: Ledger annotation, e.g. the content category.

    Returns:
        BilledResult with the work's result and the balance after the charge.

    Raises:
        InsufficientCreditsError: Before any work, if the balance is too low.
        ChargeFailedError: If the work succeeded but the spend was rejected.
        InvalidAmountError: If cost is not a positive integer; work never runs.
        Any exception raised by `work` (nothing is charged).
    """
    balance_store.require_positive_amount(cost)
    balance = await ledger.ensure_account(db, account_id)
    if not await ledger.has_sufficient(db, account_id, cost):
        await db.commit()
        raise InsufficientCreditsError(account_id, requested=cost, available=balance.balance)
    await db.commit()

    result = await work()

    outcome = await ledger.spend(db, account_id, cost, description)
    if not outcome.ok:
        await db.commit()
        logger.error(
            "Work for account %s completed but the charge of %s credits was rejected: %s",
            account_id, cost, outcome.error.value,
        )
        raise ChargeFailedError(account_id, outcome.error)

    await db.commit()
    return BilledResult(result=result, new_balance=outcome.new_balance)
