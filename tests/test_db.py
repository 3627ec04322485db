"""
Tests for transactional scopes.

Balances are always checked from a new session, so only committed work counts.
"""

import pytest

from utils.accounts import AccountUtils
from utils.db import Database, atomic
from utils.errors import InsufficientFunds
from utils.ledger import Ledger


async def committed_balance(database: Database, user_id: int) -> int:
    async with database.get_session() as session:
        return await Ledger.get_balance(session, user_id)


class TestAtomic:
    """Test atomic() commits what it owns and nothing else."""

    @pytest.mark.asyncio
    async def test_commits_after_earlier_reads(self, database: Database):
        """Test a write after a plain read is committed, not left in the read's transaction."""
        async with database.transaction() as session:
            await AccountUtils.get_or_create_user(session, 1, "reader", 1000)

        async with database.get_session() as session:
            assert await Ledger.get_balance(session, 1) == 1000
            assert session.in_transaction()

            async with atomic(session):
                await Ledger.credit(session, 1, 50, 'admin')

            assert not session.in_transaction()

        assert await committed_balance(database, 1) == 1050

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, database: Database):
        async with database.transaction() as session:
            await AccountUtils.get_or_create_user(session, 1, "tester", 100)

        async with database.get_session() as session:
            with pytest.raises(InsufficientFunds):
                async with atomic(session):
                    await Ledger.credit(session, 1, 50, 'admin')
                    await Ledger.debit(session, 1, 1000, 'bet')

        assert await committed_balance(database, 1) == 100

    @pytest.mark.asyncio
    async def test_savepoint_inside_explicit_transaction(self, database: Database):
        """Test a failed inner scope only undoes its own work."""
        async with database.transaction() as session:
            await AccountUtils.get_or_create_user(session, 1, "tester", 100)

        async with database.transaction() as session:
            await Ledger.credit(session, 1, 50, 'admin')
            with pytest.raises(InsufficientFunds):
                async with atomic(session):
                    assert session.in_nested_transaction()
                    await Ledger.credit(session, 1, 25, 'admin')
                    await Ledger.debit(session, 1, 1000, 'bet')

        assert await committed_balance(database, 1) == 150

    @pytest.mark.asyncio
    async def test_outer_rollback_discards_inner_scope(self, database: Database):
        async with database.transaction() as session:
            await AccountUtils.get_or_create_user(session, 1, "tester", 100)

        async with database.get_session() as session:
            with pytest.raises(RuntimeError):
                async with session.begin():
                    async with atomic(session):
                        await Ledger.credit(session, 1, 50, 'admin')
                    raise RuntimeError("abort")

        assert await committed_balance(database, 1) == 100
