"""
Tests for concurrent access to one account.

Each task below uses its OWN session (and so its own SQLite connection),
the way concurrent requests do in the running service. The tests verify:
  - Concurrent spends never overdraw and never lose an update
  - Concurrent first-use initialization grants the starting balance once
  - The ledger still replays to the stored balance afterwards
"""

import asyncio

from sqlalchemy import func, select

from credit_ledger.exceptions import FailureReason
from credit_ledger.models.credit_transaction import CreditTransaction, TransactionKind
from credit_ledger.services import ledger


async def _spend_in_own_session(session_factory, account_id, amount):
    async with session_factory() as session:
        result = await ledger.spend(session, account_id, amount)
        await session.commit()
        return result


async def _ensure_in_own_session(session_factory, account_id):
    async with session_factory() as session:
        balance = await ledger.ensure_account(session, account_id, starting_balance=10)
        await session.commit()
        return balance.balance


async def _seed(session_factory, account_id, starting_balance):
    async with session_factory() as session:
        await ledger.ensure_account(session, account_id, starting_balance=starting_balance)
        await session.commit()


class TestConcurrentSpends:

    async def test_two_full_spends_only_one_succeeds(self, session_factory, db_session):
        await _seed(session_factory, "u1", 10)

        results = await asyncio.gather(
            _spend_in_own_session(session_factory, "u1", 10),
            _spend_in_own_session(session_factory, "u1", 10),
        )

        successes = [r for r in results if r.ok]
        failures = [r for r in results if not r.ok]
        assert len(successes) == 1
        assert successes[0].new_balance == 0
        assert failures[0].error is FailureReason.INSUFFICIENT_FUNDS

        balance = await ledger.get_balance(db_session, "u1")
        assert balance.balance == 0
        assert balance.total_consumed == 10

    async def test_many_small_spends_never_overdraw(self, session_factory, db_session):
        await _seed(session_factory, "u1", 10)

        results = await asyncio.gather(
            *(_spend_in_own_session(session_factory, "u1", 3) for _ in range(20))
        )

        assert sum(1 for r in results if r.ok) == 3
        assert sorted(r.new_balance for r in results if r.ok) == [1, 4, 7]

        balance = await ledger.get_balance(db_session, "u1")
        assert balance.balance == 1

        debits = (
            await db_session.execute(
                select(func.count())
                .select_from(CreditTransaction)
                .where(CreditTransaction.kind == TransactionKind.DEBIT)
            )
        ).scalar_one()
        assert debits == 3
        assert (await ledger.audit(db_session, "u1")).consistent is True

    async def test_spends_on_different_accounts_do_not_interfere(
        self, session_factory, db_session
    ):
        await _seed(session_factory, "u1", 5)
        await _seed(session_factory, "u2", 5)

        results = await asyncio.gather(
            *(_spend_in_own_session(session_factory, account, 1)
              for account in ("u1", "u2") * 5)
        )

        assert all(r.ok for r in results)
        assert (await ledger.get_balance(db_session, "u1")).balance == 0
        assert (await ledger.get_balance(db_session, "u2")).balance == 0


class TestConcurrentInitialization:

    async def test_starting_balance_granted_once(self, session_factory, db_session):
        balances = await asyncio.gather(
            *(_ensure_in_own_session(session_factory, "u1") for _ in range(10))
        )

        assert balances == [10] * 10

        initial_rows = (
            await db_session.execute(
                select(func.count())
                .select_from(CreditTransaction)
                .where(
                    CreditTransaction.account_id == "u1",
                    CreditTransaction.kind == TransactionKind.INITIAL,
                )
            )
        ).scalar_one()
        assert initial_rows == 1
        assert (await ledger.get_balance(db_session, "u1")).balance == 10
