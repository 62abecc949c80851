"""
Tests for the balance store primitives.

These tests verify:
  - initialize creates a row exactly once and reports who created it
  - get reflects the latest mutation
  - debit_if_sufficient only ever debits when the balance covers it
  - credit adds without touching total_consumed
  - Amounts are validated before anything reaches the database
  - The database itself refuses a negative balance
"""

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from credit_ledger.exceptions import FailureReason, InvalidAmountError
from credit_ledger.models.credit_balance import MAX_CREDIT_AMOUNT, CreditBalance
from credit_ledger.services import balance_store


class TestInitialize:
    """Tests for balance_store.initialize."""

    async def test_creates_row_with_starting_balance(self, db_session):
        balance, created = await balance_store.initialize(db_session, "acct-1", 10)

        assert created is True
        assert balance.account_id == "acct-1"
        assert balance.balance == 10
        assert balance.total_consumed == 0
        assert balance.last_updated is not None

    async def test_second_call_returns_existing_row(self, db_session):
        await balance_store.initialize(db_session, "acct-1", 10)
        await balance_store.debit_if_sufficient(db_session, "acct-1", 4)

        balance, created = await balance_store.initialize(db_session, "acct-1", 10)

        assert created is False
        assert balance.balance == 6  # not reset, not granted again
        assert balance.total_consumed == 4

    async def test_zero_starting_balance_allowed(self, db_session):
        balance, created = await balance_store.initialize(db_session, "acct-1", 0)
        assert created is True
        assert balance.balance == 0

    @pytest.mark.parametrize("starting_balance", [-1, 1.5, "10", True, MAX_CREDIT_AMOUNT + 1])
    async def test_invalid_starting_balance_rejected(self, db_session, starting_balance):
        with pytest.raises(InvalidAmountError):
            await balance_store.initialize(db_session, "acct-1", starting_balance)
        assert await balance_store.get(db_session, "acct-1") is None


class TestGet:
    """Tests for balance_store.get."""

    async def test_missing_account_is_none(self, db_session):
        assert await balance_store.get(db_session, "nobody") is None

    async def test_reflects_latest_mutation(self, db_session):
        await balance_store.initialize(db_session, "acct-1", 10)
        first = await balance_store.get(db_session, "acct-1")

        await balance_store.credit(db_session, "acct-1", 5)
        second = await balance_store.get(db_session, "acct-1")

        # Same identity-mapped object, refreshed from the database
        assert second is first
        assert second.balance == 15


class TestDebitIfSufficient:
    """Tests for the conditional debit primitive."""

    async def test_debit_decrements_and_counts_consumption(self, db_session):
        await balance_store.initialize(db_session, "acct-1", 10)

        result = await balance_store.debit_if_sufficient(db_session, "acct-1", 3)

        assert result.ok is True
        assert result.new_balance == 7
        assert result.reason is None
        row = await balance_store.get(db_session, "acct-1")
        assert row.balance == 7
        assert row.total_consumed == 3

    async def test_exact_balance_debit_leaves_zero(self, db_session):
        await balance_store.initialize(db_session, "acct-1", 10)

        result = await balance_store.debit_if_sufficient(db_session, "acct-1", 10)

        assert result.ok is True
        assert result.new_balance == 0

    async def test_insufficient_balance_changes_nothing(self, db_session):
        await balance_store.initialize(db_session, "acct-1", 10)
        before = await balance_store.get(db_session, "acct-1")
        last_updated = before.last_updated

        result = await balance_store.debit_if_sufficient(db_session, "acct-1", 11)

        assert result.ok is False
        assert result.reason is FailureReason.INSUFFICIENT_FUNDS
        assert result.new_balance is None
        row = await balance_store.get(db_session, "acct-1")
        assert row.balance == 10
        assert row.total_consumed == 0
        assert row.last_updated == last_updated

    async def test_missing_account_is_not_found(self, db_session):
        result = await balance_store.debit_if_sufficient(db_session, "nobody", 1)

        assert result.ok is False
        assert result.reason is FailureReason.NOT_FOUND

    @pytest.mark.parametrize("amount", [0, -5, 2.0, "3", None, False, MAX_CREDIT_AMOUNT + 1, 2**63])
    async def test_invalid_amount_rejected(self, db_session, amount):
        await balance_store.initialize(db_session, "acct-1", 10)

        with pytest.raises(InvalidAmountError):
            await balance_store.debit_if_sufficient(db_session, "acct-1", amount)

        row = await balance_store.get(db_session, "acct-1")
        assert row.balance == 10


class TestCredit:
    """Tests for the credit primitive."""

    async def test_credit_increments_balance_only(self, db_session):
        await balance_store.initialize(db_session, "acct-1", 10)
        await balance_store.debit_if_sufficient(db_session, "acct-1", 2)

        result = await balance_store.credit(db_session, "acct-1", 5)

        assert result.ok is True
        assert result.new_balance == 13
        row = await balance_store.get(db_session, "acct-1")
        assert row.total_consumed == 2  # a refund does not undo consumption

    async def test_credit_missing_account_is_not_found(self, db_session):
        result = await balance_store.credit(db_session, "nobody", 5)

        assert result.ok is False
        assert result.reason is FailureReason.NOT_FOUND

    async def test_credit_past_ceiling_is_rejected(self, db_session):
        await balance_store.initialize(db_session, "acct-1", 10)

        result = await balance_store.credit(db_session, "acct-1", MAX_CREDIT_AMOUNT)

        assert result.ok is False
        assert result.reason is FailureReason.BALANCE_LIMIT_EXCEEDED
        row = await balance_store.get(db_session, "acct-1")
        assert row.balance == 10

    async def test_credit_exactly_to_ceiling(self, db_session):
        await balance_store.initialize(db_session, "acct-1", 10)

        result = await balance_store.credit(db_session, "acct-1", MAX_CREDIT_AMOUNT - 10)

        assert result.ok is True
        assert result.new_balance == MAX_CREDIT_AMOUNT

    @pytest.mark.parametrize("amount", [0, -1, 0.5, MAX_CREDIT_AMOUNT + 1, 2**63])
    async def test_invalid_amount_rejected(self, db_session, amount):
        await balance_store.initialize(db_session, "acct-1", 10)
        with pytest.raises(InvalidAmountError):
            await balance_store.credit(db_session, "acct-1", amount)


class TestDatabaseConstraints:
    """The balance bounds are also enforced by the database."""

    async def test_negative_balance_rejected_by_check_constraint(self, db_session):
        await balance_store.initialize(db_session, "acct-1", 10)
        await db_session.commit()

        with pytest.raises(IntegrityError):
            await db_session.execute(
                update(CreditBalance)
                .where(CreditBalance.account_id == "acct-1")
                .values(balance=-1)
                .execution_options(synchronize_session=False)
            )
        await db_session.rollback()

        row = await balance_store.get(db_session, "acct-1")
        assert row.balance == 10

    async def test_balance_above_ceiling_rejected_by_check_constraint(self, db_session):
        await balance_store.initialize(db_session, "acct-1", 10)
        await db_session.commit()

        with pytest.raises(IntegrityError):
            await db_session.execute(
                update(CreditBalance)
                .where(CreditBalance.account_id == "acct-1")
                .values(balance=MAX_CREDIT_AMOUNT + 1)
                .execution_options(synchronize_session=False)
            )
        await db_session.rollback()

        row = await balance_store.get(db_session, "acct-1")
        assert row.balance == 10
