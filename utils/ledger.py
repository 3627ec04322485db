"""
Ledger primitive: atomic coin debit and credit on user accounts.

Balance changes are applied as a single conditional UPDATE with RETURNING,
so concurrent bets and settlements against the same user can never
interleave into a lost update or an overdraft.
"""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from models import Transaction, User
from utils.errors import InsufficientFunds, InvalidAmount, UserNotFound

logger = logging.getLogger(__name__)


class Ledger:
    """Balance mutation primitive for user coin accounts."""

    @staticmethod
    async def get_balance(session: AsyncSession, user_id: int) -> int:
        """Get a user's current balance from the database."""
        stmt = select(User.coins).where(User.id == user_id)
        result = await session.execute(stmt)
        balance = result.scalar_one_or_none()
        if balance is None:
            raise UserNotFound(user_id=user_id)
        return balance

    @staticmethod
    async def debit(
        session: AsyncSession,
        user_id: int,
        amount: int,
        type_: str,
        description: str = "",
        bet_id: Optional[int] = None
    ) -> int:
        """Take coins from a user. Returns the new balance."""
        Ledger._check_amount(amount)

        stmt = (
            update(User)
            .where(User.id == user_id, User.coins >= amount)
            .values(coins=User.coins - amount)
            .returning(User.coins)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        new_balance = result.scalar_one_or_none()

        if new_balance is None:
            # Either the user is missing or the guard rejected the debit
            balance = await Ledger.get_balance(session, user_id)
            raise InsufficientFunds(
                f"Insufficient coins: balance is {balance}, needed {amount}.",
                user_id=user_id, balance=balance, amount=amount
            )

        Ledger._sync_identity(session, user_id, new_balance)
        Ledger._record(session, user_id, -amount, new_balance, type_, description, bet_id)
        return new_balance

    @staticmethod
    async def credit(
        session: AsyncSession,
        user_id: int,
        amount: int,
        type_: str,
        description: str = "",
        bet_id: Optional[int] = None
    ) -> int:
        """Give coins to a user. Returns the new balance."""
        Ledger._check_amount(amount)

        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(coins=User.coins + amount)
            .returning(User.coins)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        new_balance = result.scalar_one_or_none()
        if new_balance is None:
            raise UserNotFound(user_id=user_id)

        Ledger._sync_identity(session, user_id, new_balance)
        Ledger._record(session, user_id, amount, new_balance, type_, description, bet_id)
        return new_balance

    @staticmethod
    def _check_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount(amount=amount)

    @staticmethod
    def _sync_identity(session: AsyncSession, user_id: int, balance: int) -> None:
        # Keep an already-loaded User in step with the database row
        key = session.identity_key(User, user_id)
        user = session.identity_map.get(key)
        if user is not None:
            set_committed_value(user, 'coins', balance)

    @staticmethod
    def _record(
        session: AsyncSession,
        user_id: int,
        amount: int,
        balance_after: int,
        type_: str,
        description: str,
        bet_id: Optional[int]
    ) -> None:
        session.add(Transaction(
            user_id=user_id,
            type=type_,
            amount=amount,
            balance_after=balance_after,
            description=description,
            bet_id=bet_id
        ))
        logger.debug(f"Ledger {type_}: user={user_id} amount={amount} balance={balance_after}")
