"""
Credits router — what the signed-in account sees about its own credits.

Endpoints (Bearer JWT, scoped to the token's account):
  POST /credits/initialize     — Create the balance row on first use
  GET  /credits                — Current balance
  GET  /credits/transactions   — Paginated history (newest first by default)
  GET  /credits/stats          — Earned / used totals
  GET  /credits/audit          — Replay check of the whole ledger

There is no way to read another account's credits here: the account id
always comes from the token, never from the request.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.config import settings
from credit_ledger.database import get_db
from credit_ledger.dependencies import get_current_account_id
from credit_ledger.exceptions import AccountNotFoundError
from credit_ledger.models.credit_transaction import MAX_TRANSACTION_ID
from credit_ledger.schemas.credit import (
    AuditResponse,
    BalanceResponse,
    StatsResponse,
    TransactionResponse,
)
from credit_ledger.services import ledger
from credit_ledger.services.transaction_ledger import TransactionOrder

router = APIRouter()


@router.post(
    "/initialize",
    response_model=BalanceResponse,
    summary="Initialize your credit balance",
)
async def initialize_credits(
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Create your balance with the starting grant, if it doesn't exist yet.

    Calling this again is harmless: the existing balance is returned and
    the starting grant is never given twice.
    """
    return await ledger.ensure_account(db, account_id)


@router.get(
    "",
    response_model=BalanceResponse,
    summary="Check your credit balance",
)
async def get_credits(
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    """Return the current balance. 404 if the balance was never initialized."""
    balance = await ledger.get_balance(db, account_id)
    if balance is None:
        raise AccountNotFoundError(account_id)
    return balance


@router.get(
    "/transactions",
    response_model=list[TransactionResponse],
    summary="List your credit transactions",
)
async def list_credit_transactions(
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    order: TransactionOrder = Query(TransactionOrder.NEWEST_FIRST),
    before_id: int | None = Query(
        None, ge=1, le=MAX_TRANSACTION_ID, description="Return rows older than this id"
    ),
    after_id: int | None = Query(
        None, ge=0, le=MAX_TRANSACTION_ID, description="Return rows newer than this id"
    ),
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    """
    List transactions, newest first unless `order=oldest_first`.

    To page, pass the last id you received as `before_id` (newest first)
    or `after_id` (oldest first).
    """
    return await ledger.get_history(
        db,
        account_id,
        limit=limit,
        order=order,
        before_id=before_id,
        after_id=after_id,
    )


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Credit usage statistics",
)
async def get_credit_stats(
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    """Totals earned and used, the current balance, and a consistency flag."""
    return await ledger.get_stats(db, account_id)


@router.get(
    "/audit",
    response_model=AuditResponse,
    summary="Verify your credit ledger",
)
async def audit_credits(
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Replay every transaction and compare the result with the stored balance.

    `first_mismatch_id` names the first row whose balance_after does not
    match the replay, which would indicate a data integrity issue.
    """
    return await ledger.audit(db, account_id)
