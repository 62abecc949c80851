"""
Custom exception classes, failure reasons, and FastAPI exception handlers.

Two kinds of "no" come out of the ledger:

  - Business outcomes (the account has no balance row, or not enough
    credits). The services RETURN these as a FailureReason inside a typed
    result. They are expected and never thrown as faults.
  - Faults (the database is unreachable, a unit of work could not commit,
    a caller passed a nonsensical amount). These are RAISED.

The HTTP layer and the billing helper turn business outcomes into the
exceptions below when they need to stop a request; the handlers registered
here then translate every exception into a consistent JSON response.

Exception hierarchy:
    LedgerError (base)
    ├── AccountNotFoundError         — account has no balance row yet
    ├── InsufficientCreditsError     — spend larger than the balance
    ├── ChargeFailedError            — billable work succeeded but spend did not
    ├── BalanceLimitExceededError    — grant would push the balance past its maximum
    ├── InvalidAmountError           — zero, negative, oversized, or non-integer amount
    ├── InvalidTransactionKindError  — kind outside the closed enumeration
    ├── LedgerImmutableError         — attempt to update/delete a ledger row
    └── StorageFailureError          — the database failed mid unit-of-work
"""

import enum
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class FailureReason(str, enum.Enum):
    """Recoverable business outcomes returned by balance mutations."""
    NOT_FOUND = "NOT_FOUND"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    BALANCE_LIMIT_EXCEEDED = "BALANCE_LIMIT_EXCEEDED"


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class LedgerError(Exception):
    """Base exception for all credit ledger domain errors."""

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Domain exceptions
# ---------------------------------------------------------------------------

class AccountNotFoundError(LedgerError):
    """Raised when an account has no balance row (ensure_account first)."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account {account_id} has no credit balance")


class InsufficientCreditsError(LedgerError):
    """
    Raised when a spend is larger than the account's balance.

    Attributes:
        account_id: The account that lacks credits.
        requested: Credits the caller tried to spend.
        available: Balance at the time of the rejection, if known.
    """

    def __init__(self, account_id: str, requested: int, available: int | None = None):
        self.account_id = account_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient credits: requested {requested}"
            + (f", available {available}" if available is not None else "")
        )


class ChargeFailedError(LedgerError):
    """
    Raised when billable work finished but the spend could not be recorded.

    The caller must surface this to the user and must NOT retry the spend
    blindly: a retry that succeeds charges again.
    """

    def __init__(self, account_id: str, reason: FailureReason):
        self.account_id = account_id
        self.reason = reason
        super().__init__(
            f"Work completed but credits could not be charged to {account_id}: "
            f"{reason.value}"
        )


class BalanceLimitExceededError(LedgerError):
    """Raised when a grant would take the balance above its maximum."""

    def __init__(self, account_id: str, requested: int):
        self.account_id = account_id
        self.requested = requested
        super().__init__(
            f"Adding {requested} credits would exceed the maximum balance of {account_id}"
        )


class InvalidAmountError(LedgerError):
    """Raised when a credit amount is not an integer in the allowed range."""

    def __init__(self, amount):
        self.amount = amount
        super().__init__(f"Credit amount {amount!r} is not a whole number in the allowed range")


class InvalidTransactionKindError(LedgerError):
    """Raised when a transaction kind is unknown or not allowed for the operation."""

    def __init__(self, kind, allowed=None):
        self.kind = kind
        self.allowed = allowed
        message = f"Invalid transaction kind {kind!r}"
        if allowed:
            message += f" (allowed: {', '.join(sorted(k.value for k in allowed))})"
        super().__init__(message)


class LedgerImmutableError(LedgerError):
    """Raised when code tries to modify or delete a recorded transaction."""

    def __init__(self, transaction_id: int | None = None):
        self.transaction_id = transaction_id
        super().__init__(
            f"Credit transaction {transaction_id} is immutable; the ledger is append-only"
        )


class StorageFailureError(LedgerError):
    """Raised when the database is unreachable or a unit of work cannot commit."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Storage failure during {operation}")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers with the FastAPI application.

    Each handler maps a domain exception to an HTTP status code and a
    consistent JSON body: {"detail": "...", "error_type": "..."}
    """

    @app.exception_handler(AccountNotFoundError)
    async def account_not_found_handler(
        request: Request, exc: AccountNotFoundError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"detail": exc.detail, "error_type": "account_not_found"},
        )

    @app.exception_handler(InsufficientCreditsError)
    async def insufficient_credits_handler(
        request: Request, exc: InsufficientCreditsError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,  # the request was valid but the balance rejects it
            content={
                "detail": exc.detail,
                "error_type": "insufficient_funds",
                "requested": exc.requested,
                "available": exc.available,
            },
        )

    @app.exception_handler(ChargeFailedError)
    async def charge_failed_handler(
        request: Request, exc: ChargeFailedError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={
                "detail": exc.detail,
                "error_type": "charge_failed",
                "reason": exc.reason.value,
            },
        )

    @app.exception_handler(BalanceLimitExceededError)
    async def balance_limit_handler(
        request: Request, exc: BalanceLimitExceededError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "detail": exc.detail,
                "error_type": "balance_limit_exceeded",
                "requested": exc.requested,
            },
        )

    @app.exception_handler(InvalidAmountError)
    async def invalid_amount_handler(
        request: Request, exc: InvalidAmountError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": exc.detail, "error_type": "invalid_amount"},
        )

    @app.exception_handler(InvalidTransactionKindError)
    async def invalid_kind_handler(
        request: Request, exc: InvalidTransactionKindError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": exc.detail, "error_type": "invalid_transaction_kind"},
        )

    @app.exception_handler(LedgerImmutableError)
    async def ledger_immutable_handler(
        request: Request, exc: LedgerImmutableError
    ) -> JSONResponse:
        logger.error("Blocked mutation of ledger row: %s", exc.detail)
        return JSONResponse(
            status_code=500,
            content={"detail": exc.detail, "error_type": "ledger_immutable"},
        )

    @app.exception_handler(StorageFailureError)
    async def storage_failure_handler(
        request: Request, exc: StorageFailureError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=503,
            content={"detail": exc.detail, "error_type": "storage_failure"},
        )
