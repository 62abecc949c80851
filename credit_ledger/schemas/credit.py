"""
Pydantic schemas for the credit endpoints.

All amounts are whole credits. Request amounts are strict integers: a JSON
float such as 1.0 is rejected rather than silently converted. Amounts are
capped at MAX_CREDIT_AMOUNT, the range of the balance column.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from credit_ledger.models.credit_balance import MAX_CREDIT_AMOUNT
from credit_ledger.models.credit_transaction import TransactionKind


class BalanceResponse(BaseModel):
    """Current balance of one account."""
    account_id: str
    balance: int
    total_consumed: int
    last_updated: datetime

    model_config = {"from_attributes": True}


class TransactionResponse(BaseModel):
    """Public representation of a ledger row."""
    id: int
    account_id: str
    amount: int
    balance_after: int
    kind: TransactionKind
    description: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class StatsResponse(BaseModel):
    """
    Aggregates over the ledger.

    `consistent` is False if the ledger and the balance row disagree,
    which would indicate a data integrity issue.
    """
    account_id: str
    total_earned: int
    total_used: int
    transaction_count: int
    current_balance: int
    total_consumed: int
    consistent: bool

    model_config = {"from_attributes": True}


class AuditResponse(BaseModel):
    """Result of replaying the ledger from its first row."""
    account_id: str
    transaction_count: int
    replayed_balance: int
    replayed_total_consumed: int
    stored_balance: int | None
    stored_total_consumed: int | None
    first_mismatch_id: int | None
    consistent: bool

    model_config = {"from_attributes": True}


class SpendRequest(BaseModel):
    """Request body for POST /internal/accounts/{id}/spend."""
    amount: int = Field(
        gt=0, le=MAX_CREDIT_AMOUNT, strict=True, description="Credits to debit (positive)"
    )
    description: str | None = Field(
        "Content generation", max_length=255, description="e.g. the content category"
    )


class GrantRequest(BaseModel):
    """Request body for POST /internal/accounts/{id}/grant."""
    amount: int = Field(
        gt=0, le=MAX_CREDIT_AMOUNT, strict=True, description="Credits to add (positive)"
    )
    kind: Literal["PURCHASE", "BONUS", "REFUND"] = "PURCHASE"
    description: str | None = Field("Credits added", max_length=255)


class MutationResponse(BaseModel):
    """Response body for a successful spend or grant."""
    account_id: str
    ok: bool
    new_balance: int


class SufficiencyResponse(BaseModel):
    account_id: str
    required: int
    sufficient: bool
