"""
Tests for charge_for_work, the billable-work helper.

These tests verify:
  - Successful work is charged exactly once
  - Work that fails is never charged
  - Work never runs when the balance is already too low or the cost is invalid
  - A spend rejected after the work ran surfaces as ChargeFailedError
"""

import pytest

from credit_ledger.exceptions import (
    ChargeFailedError,
    FailureReason,
    InsufficientCreditsError,
    InvalidAmountError,
)
from credit_ledger.models.credit_transaction import TransactionKind
from credit_ledger.services import ledger
from credit_ledger.services.billing import charge_for_work


class TestChargeForWork:

    async def test_successful_work_is_charged(self, db_session):
        async def generate():
            return "image-bytes"

        billed = await charge_for_work(db_session, "u1", generate, cost=2, description="Image")

        assert billed.result == "image-bytes"
        assert billed.new_balance == 8
        history = await ledger.get_history(db_session, "u1")
        assert [(t.kind, t.amount) for t in history] == [
            (TransactionKind.DEBIT, -2),
            (TransactionKind.INITIAL, 10),
        ]
        assert history[0].description == "Image"

    async def test_failed_work_is_not_charged(self, db_session):
        async def generate():
            raise RuntimeError("model timed out")

        with pytest.raises(RuntimeError, match="model timed out"):
            await charge_for_work(db_session, "u1", generate)
        await db_session.rollback()

        balance = await ledger.get_balance(db_session, "u1")
        assert balance.balance == 10
        assert len(await ledger.get_history(db_session, "u1")) == 1

    async def test_work_not_run_without_credits(self, db_session):
        await ledger.ensure_account(db_session, "u1", starting_balance=1)
        await db_session.commit()
        calls = []

        async def generate():
            calls.append(1)
            return "never"

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await charge_for_work(db_session, "u1", generate, cost=2)

        assert calls == []
        assert exc_info.value.requested == 2
        assert exc_info.value.available == 1
        assert (await ledger.get_balance(db_session, "u1")).balance == 1

    async def test_balance_drained_during_work(self, db_session, session_factory):
        async def generate():
            # Another request spends everything while the work runs
            async with session_factory() as other:
                result = await ledger.spend(other, "u1", 10)
                await other.commit()
            assert result.ok
            return "image-bytes"

        with pytest.raises(ChargeFailedError) as exc_info:
            await charge_for_work(db_session, "u1", generate)

        assert exc_info.value.reason is FailureReason.INSUFFICIENT_FUNDS
        balance = await ledger.get_balance(db_session, "u1")
        assert balance.balance == 0
        assert balance.total_consumed == 10
        assert (await ledger.audit(db_session, "u1")).consistent is True

    @pytest.mark.parametrize("cost", [0, -1, 2**63])
    async def test_invalid_cost_never_runs_work(self, db_session, cost):
        calls = []

        async def generate():
            calls.append(1)
            return "free"

        with pytest.raises(InvalidAmountError):
            await charge_for_work(db_session, "u1", generate, cost=cost)

        assert calls == []
        assert await ledger.get_balance(db_session, "u1") is None
