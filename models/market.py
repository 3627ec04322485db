"""
Market and option models for wagering questions.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .enums import EventStatus


class Market(Base):
    """A single wagering question (a match or a tournament overall winner)."""

    __tablename__ = 'markets'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey('tournaments.id', ondelete='CASCADE'), index=True, nullable=False
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # 'match' or 'overall_winner'
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=EventStatus.UPCOMING.value, index=True)

    # Match markets only
    team1: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    team2: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    result: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    score: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Sum of all option stakes
    total_stake: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    options: Mapped[List['MarketOption']] = relationship(
        back_populates='market',
        cascade='all, delete-orphan',
        order_by='MarketOption.position',
        lazy='selectin',
    )

    def option_names(self) -> List[str]:
        return [option.name for option in self.options]

    def stakes(self) -> dict:
        """Ordered mapping of option name to accumulated stake."""
        return {option.name: option.stake for option in self.options}

    def __repr__(self) -> str:
        return f"<Market(id={self.id}, kind='{self.kind}', title='{self.title}', status='{self.status}')>"


class MarketOption(Base):
    """One selectable outcome of a market with its odds and accumulated stake."""

    __tablename__ = 'market_options'
    __table_args__ = (UniqueConstraint('market_id', 'name', name='uq_market_option_name'),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    market_id: Mapped[int] = mapped_column(ForeignKey('markets.id', ondelete='CASCADE'), index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    odds: Mapped[float] = mapped_column(Float, default=2.0, nullable=False)
    stake: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    market: Mapped[Market] = relationship(back_populates='options')

    def __repr__(self) -> str:
        return f"<MarketOption(market_id={self.market_id}, name='{self.name}', odds={self.odds}, stake={self.stake})>"
