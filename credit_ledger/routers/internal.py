"""
Internal router — billing operations for the content-generation service.

Endpoints (X-Internal-Token, any account):
  POST /internal/accounts/{account_id}/ensure      — Create balance on first use
  GET  /internal/accounts/{account_id}/sufficient  — Pre-check before billable work
  POST /internal/accounts/{account_id}/spend       — Charge for completed work
  POST /internal/accounts/{account_id}/grant       — Purchase / bonus / refund

Call order for billable work: ensure (or sufficient) first, then the work,
then spend only once the work produced a usable result. A rejected spend
returns 422 and must not be retried blindly, since spend is not idempotent.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.database import get_db
from credit_ledger.dependencies import MAX_ACCOUNT_ID_LENGTH, require_internal_token
from credit_ledger.exceptions import (
    AccountNotFoundError,
    BalanceLimitExceededError,
    FailureReason,
    InsufficientCreditsError,
)
from credit_ledger.models.credit_balance import MAX_CREDIT_AMOUNT
from credit_ledger.schemas.credit import (
    BalanceResponse,
    GrantRequest,
    MutationResponse,
    SpendRequest,
    SufficiencyResponse,
)
from credit_ledger.services import ledger

router = APIRouter(dependencies=[Depends(require_internal_token)])

AccountId = Annotated[str, Path(min_length=1, max_length=MAX_ACCOUNT_ID_LENGTH)]


@router.post(
    "/accounts/{account_id}/ensure",
    response_model=BalanceResponse,
    summary="Ensure an account has a credit balance",
)
async def ensure_account(
    account_id: AccountId,
    db: AsyncSession = Depends(get_db),
):
    """Create the balance with the starting grant on first use; idempotent."""
    return await ledger.ensure_account(db, account_id)


@router.get(
    "/accounts/{account_id}/sufficient",
    response_model=SufficiencyResponse,
    summary="Check whether an account can afford a charge",
)
async def check_sufficient(
    account_id: AccountId,
    required: int = Query(1, ge=0, le=MAX_CREDIT_AMOUNT),
    db: AsyncSession = Depends(get_db),
):
    """False (not 404) when the account has no balance yet."""
    sufficient = await ledger.has_sufficient(db, account_id, required)
    return SufficiencyResponse(account_id=account_id, required=required, sufficient=sufficient)


@router.post(
    "/accounts/{account_id}/spend",
    response_model=MutationResponse,
    summary="Charge credits for completed work",
)
async def spend_credits(
    request: SpendRequest,
    account_id: AccountId,
    db: AsyncSession = Depends(get_db),
):
    """
    Debit credits and record a DEBIT transaction.

    - **404** if the account has no balance (ensure it first)
    - **422** if the balance is too low; nothing is recorded
    """
    outcome = await ledger.spend(db, account_id, request.amount, request.description)
    if not outcome.ok:
        if outcome.error is FailureReason.NOT_FOUND:
            raise AccountNotFoundError(account_id)
        balance = await ledger.get_balance(db, account_id)
        raise InsufficientCreditsError(
            account_id,
            requested=request.amount,
            available=balance.balance if balance else None,
        )
    return MutationResponse(account_id=account_id, ok=True, new_balance=outcome.new_balance)


@router.post(
    "/accounts/{account_id}/grant",
    response_model=MutationResponse,
    summary="Add purchased, bonus, or refunded credits",
)
async def grant_credits(
    request: GrantRequest,
    account_id: AccountId,
    db: AsyncSession = Depends(get_db),
):
    """
    Credit the account and record a PURCHASE, BONUS or REFUND transaction.

    - **404** if the account has no balance (ensure it first)
    - **422** if the balance would exceed its maximum; nothing is recorded
    """
    outcome = await ledger.grant(
        db, account_id, request.amount, request.kind, request.description
    )
    if not outcome.ok:
        if outcome.error is FailureReason.NOT_FOUND:
            raise AccountNotFoundError(account_id)
        raise BalanceLimitExceededError(account_id, requested=request.amount)
    return MutationResponse(account_id=account_id, ok=True, new_balance=outcome.new_balance)
