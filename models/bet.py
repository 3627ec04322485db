"""
Bet model for tracking wagers placed on markets.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base
from .enums import BetStatus


class Bet(Base):
    """Represents a wager on one option of a market.

    Odds are frozen at placement time; later odds changes on the market do
    not affect the payout of an existing bet.
    """

    __tablename__ = 'bets'
    __table_args__ = (UniqueConstraint('user_id', 'idempotency_key', name='uq_bet_idempotency'),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, index=True)
    market_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    tournament_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    selection: Mapped[str] = mapped_column(String(100), nullable=False)  # Option name the user picked
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    odds: Mapped[float] = mapped_column(Float, nullable=False)
    potential_payout: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=BetStatus.ACTIVE.value, index=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Bet(id={self.id}, user_id={self.user_id}, market_id={self.market_id}, selection='{self.selection}', amount={self.amount}, status='{self.status}')>"
