"""
Account registration, moderation and leaderboard queries.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Bet, BetStatus, User
from utils.errors import UserNotFound

logger = logging.getLogger(__name__)


@dataclass
class LeaderboardEntry:
    rank: int
    user_id: int
    username: str
    coins: int
    total_bets: int
    won_bets: int
    total_wagered: int
    win_rate: float  # Percentage of settled bets that won


class AccountUtils:
    """Utility class for user accounts."""

    @staticmethod
    async def get_user(session: AsyncSession, user_id: int) -> Optional[User]:
        """Get a user by Discord ID."""
        stmt = select(User).where(User.id == user_id).execution_options(populate_existing=True)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_create_user(
        session: AsyncSession,
        user_id: int,
        username: str,
        starting_coins: int = 1000
    ) -> User:
        """Get a user, registering them with the starting balance on first use."""
        user = await AccountUtils.get_user(session, user_id)
        if user is None:
            user = User(id=user_id, username=username[:32], coins=starting_coins)
            session.add(user)
            await session.flush()
            logger.info(f"Registered user {user_id} ({username}) with {starting_coins} coins")
        return user

    @staticmethod
    async def set_banned(
        session: AsyncSession,
        user_id: int,
        banned: bool,
        reason: Optional[str] = None
    ) -> User:
        """Ban or unban a user."""
        user = await AccountUtils.get_user(session, user_id)
        if user is None:
            raise UserNotFound(user_id=user_id)

        user.banned = banned
        user.ban_reason = reason if banned else None
        await session.flush()
        logger.info(f"User {user_id} {'banned' if banned else 'unbanned'}" + (f": {reason}" if reason else ""))
        return user

    @staticmethod
    async def leaderboard(session: AsyncSession, page: int = 1, limit: int = 20) -> List[LeaderboardEntry]:
        """Non-banned users ordered by coins, with betting statistics."""
        page = max(page, 1)
        won = func.coalesce(func.sum(case((Bet.status == BetStatus.WON.value, 1), else_=0)), 0)
        settled = func.coalesce(
            func.sum(case((Bet.status.in_([BetStatus.WON.value, BetStatus.LOST.value]), 1), else_=0)), 0
        )
        stmt = (
            select(
                User.id,
                User.username,
                User.coins,
                func.count(Bet.id).label('total_bets'),
                won.label('won_bets'),
                settled.label('settled_bets'),
                func.coalesce(func.sum(Bet.amount), 0).label('total_wagered'),
            )
            .outerjoin(Bet, Bet.user_id == User.id)
            .where(User.banned.is_(False))
            .group_by(User.id, User.username, User.coins)
            .order_by(User.coins.desc(), User.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await session.execute(stmt)

        entries = []
        for idx, row in enumerate(result.all()):
            win_rate = (row.won_bets / row.settled_bets * 100) if row.settled_bets else 0.0
            entries.append(LeaderboardEntry(
                rank=(page - 1) * limit + idx + 1,
                user_id=row.id,
                username=row.username,
                coins=row.coins,
                total_bets=row.total_bets,
                won_bets=row.won_bets,
                total_wagered=row.total_wagered,
                win_rate=round(win_rate, 1),
            ))
        return entries
