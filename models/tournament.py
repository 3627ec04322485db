"""
Tournament model with its team roster and final rankings.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .enums import EventStatus


class Tournament(Base):
    """Represents a tournament that owns a set of markets."""

    __tablename__ = 'tournaments'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=EventStatus.UPCOMING.value, index=True)
    overall_market_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    teams: Mapped[List['Team']] = relationship(
        cascade='all, delete-orphan',
        order_by='Team.position',
        lazy='selectin',
    )
    rankings: Mapped[List['TournamentRanking']] = relationship(
        cascade='all, delete-orphan',
        order_by='TournamentRanking.rank',
        lazy='selectin',
    )

    def team_names(self) -> List[str]:
        return [team.name for team in self.teams]

    def __repr__(self) -> str:
        return f"<Tournament(id={self.id}, name='{self.name}', status='{self.status}')>"


class Team(Base):
    """A team on a tournament roster."""

    __tablename__ = 'tournament_teams'
    __table_args__ = (UniqueConstraint('tournament_id', 'name', name='uq_tournament_team_name'),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey('tournaments.id', ondelete='CASCADE'), index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0)


class TournamentRanking(Base):
    """Final placement of a team, set once when the tournament closes."""

    __tablename__ = 'tournament_rankings'
    __table_args__ = (UniqueConstraint('tournament_id', 'rank', name='uq_tournament_rank'),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey('tournaments.id', ondelete='CASCADE'), index=True)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    team_name: Mapped[str] = mapped_column(String(100), nullable=False)
