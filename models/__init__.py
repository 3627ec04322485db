"""
Database models for wagerbot.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from .base import Base
from .bet import Bet
from .enums import BetStatus, EventStatus, MarketKind
from .market import Market, MarketOption
from .tournament import Team, Tournament, TournamentRanking
from .transaction import Transaction
from .user import User


# Type aliases for convenience
Session = AsyncSession

__all__ = [
    'Base', 'User', 'Transaction', 'Tournament', 'Team', 'TournamentRanking',
    'Market', 'MarketOption', 'Bet', 'BetStatus', 'EventStatus', 'MarketKind', 'Session',
]
