"""
Tournament orchestration: rosters, matches, results and bulk settlement.
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Bet, BetStatus, EventStatus, Market, MarketKind, Team, Tournament, TournamentRanking
from models.enums import DRAW_OPTION, OPEN_STATUSES
from utils.bets import BetManager, SettlementReport
from utils.config import Config
from utils.db import atomic
from utils.errors import (
    ActiveBetsRemain, AlreadySettled, DuplicateTeams, InvalidRankings, InvalidResult,
    InvalidStatus, InvalidTournament, MarketFinished, NotAMatch, SettlementIncomplete, TournamentNotFound,
    UnknownTeam,
)
from utils.markets import MarketUtils

logger = logging.getLogger(__name__)


class TournamentManager:
    """Propagates tournament and match outcomes into markets and settles them."""

    def __init__(self, config: Config, bets: BetManager):
        self.config = config
        self.bets = bets

    async def get_tournament(self, session: AsyncSession, tournament_id: int) -> Tournament:
        stmt = select(Tournament).where(Tournament.id == tournament_id).execution_options(populate_existing=True)
        result = await session.execute(stmt)
        tournament = result.scalar_one_or_none()
        if tournament is None:
            raise TournamentNotFound(tournament_id=tournament_id)
        return tournament

    async def list_tournaments(self, session: AsyncSession, active_only: bool = False) -> List[Tournament]:
        stmt = select(Tournament).order_by(Tournament.start_date)
        if active_only:
            stmt = stmt.where(Tournament.status.in_(OPEN_STATUSES))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def create_tournament(
        self,
        session: AsyncSession,
        name: str,
        teams: Sequence[str],
        start_date: datetime,
        end_date: datetime,
        description: Optional[str] = None
    ) -> Tournament:
        """Create a tournament and its overall-winner market."""
        teams = self._validate_roster(teams)
        if not name or not name.strip():
            raise InvalidTournament("Tournament name is required.")
        if end_date <= start_date:
            raise InvalidTournament("End date must be after start date.")

        async with atomic(session):
            tournament = Tournament(
                name=name.strip(),
                description=description,
                start_date=start_date,
                end_date=end_date,
                status=EventStatus.UPCOMING.value,
                teams=[Team(name=team, position=idx) for idx, team in enumerate(teams)],
            )
            session.add(tournament)
            await session.flush()

            market = await MarketUtils.create_market(
                session,
                tournament_id=tournament.id,
                kind=MarketKind.OVERALL_WINNER,
                title=f"{tournament.name} - Overall Winner",
                description=f"Bet on the overall winner of {tournament.name}",
                event_date=end_date,
                options=[(team, self.config.default_odds) for team in teams],
            )
            tournament.overall_market_id = market.id
            await session.flush()

        logger.info(f"Created tournament {tournament.id} '{tournament.name}' with {len(teams)} teams")
        return tournament

    async def update_teams(self, session: AsyncSession, tournament_id: int, teams: Sequence[str]) -> Tournament:
        """Replace the roster and resync the overall-winner market options."""
        teams = self._validate_roster(teams)

        async with atomic(session):
            tournament = await self.get_tournament(session, tournament_id)
            if tournament.status == EventStatus.FINISHED.value:
                raise MarketFinished("Cannot update teams for a finished tournament.", tournament_id=tournament_id)

            if tournament.overall_market_id is not None:
                market = await MarketUtils.get_market(session, tournament.overall_market_id)
                current = {option.name: option.odds for option in market.options}
                await MarketUtils.set_options(
                    session,
                    market.id,
                    [(team, current.get(team, self.config.default_odds)) for team in teams],
                    self.config.min_odds,
                )

            existing = {team.name: team for team in tournament.teams}
            roster = []
            for idx, name in enumerate(teams):
                team = existing.get(name) or Team(name=name)
                team.position = idx
                roster.append(team)
            tournament.teams = roster
            await session.flush()

        logger.info(f"Updated roster of tournament {tournament_id}: {teams}")
        return await self.get_tournament(session, tournament_id)

    async def set_status(self, session: AsyncSession, tournament_id: int, status: str) -> Tournament:
        """Move a tournament between upcoming and active, mirroring its overall-winner market."""
        if status not in OPEN_STATUSES:
            raise InvalidStatus(
                "Tournaments are finished by posting results.", status=status
            )

        async with atomic(session):
            tournament = await self.get_tournament(session, tournament_id)
            if tournament.status not in OPEN_STATUSES:
                raise MarketFinished(tournament_id=tournament_id, status=tournament.status)
            tournament.status = status
            await session.flush()
            if tournament.overall_market_id is not None:
                await MarketUtils.set_status(session, tournament.overall_market_id, status)

        logger.info(f"Tournament {tournament_id} status set to {status}")
        return tournament

    async def create_match(
        self,
        session: AsyncSession,
        tournament_id: int,
        team1: str,
        team2: str,
        event_date: datetime,
        title: Optional[str] = None,
        description: Optional[str] = None
    ) -> Market:
        """Create a three-way match market between two roster teams."""
        async with atomic(session):
            tournament = await self.get_tournament(session, tournament_id)
            roster = tournament.team_names()
            for team in (team1, team2):
                if team not in roster:
                    raise UnknownTeam(f"Team '{team}' not found in tournament.", team=team)
            if team1 == team2:
                raise DuplicateTeams(team=team1)

            market = await MarketUtils.create_market(
                session,
                tournament_id=tournament.id,
                kind=MarketKind.MATCH,
                title=title or f"{team1} vs {team2}",
                description=description or f"Match between {team1} and {team2}",
                event_date=event_date,
                options=[
                    (team1, self.config.default_odds),
                    (team2, self.config.default_odds),
                    (DRAW_OPTION, self.config.draw_odds),
                ],
                team1=team1,
                team2=team2,
            )

        logger.info(f"Created match market {market.id}: {team1} vs {team2} in tournament {tournament_id}")
        return market

    async def set_match_result(
        self,
        session: AsyncSession,
        market_id: int,
        winner: str,
        score: Optional[str] = None
    ) -> SettlementReport:
        """Declare a match result and settle every bet on it."""
        async with atomic(session):
            market = await MarketUtils.get_market(session, market_id)
            if market.kind != MarketKind.MATCH.value:
                raise NotAMatch(market_id=market_id)
            allowed = [market.team1, market.team2, DRAW_OPTION]
            if winner not in allowed:
                raise InvalidResult(f"Winner must be one of: {', '.join(allowed)}.", result=winner)
            await MarketUtils.declare_result(session, market_id, winner, score)

        return await self._settle(session, market_id, winner)

    async def set_tournament_results(
        self,
        session: AsyncSession,
        tournament_id: int,
        rankings: Sequence[Tuple[int, str]]
    ) -> Tournament:
        """Record final ``(rank, team)`` rankings and settle the overall-winner market.

        The rankings commit before settlement runs. If settlement then fails,
        ``SettlementIncomplete`` is raised and the market can be settled again
        later.
        """
        async with atomic(session):
            tournament = await self.get_tournament(session, tournament_id)
            if tournament.status == EventStatus.FINISHED.value:
                raise AlreadySettled("Tournament results have already been set.", tournament_id=tournament_id)

            ordered = self._validate_rankings(rankings, tournament.team_names())
            tournament.rankings = [
                TournamentRanking(rank=rank, team_name=team) for rank, team in ordered
            ]
            tournament.status = EventStatus.FINISHED.value
            await session.flush()

            winner = ordered[0][1]
            if tournament.overall_market_id is not None:
                await MarketUtils.declare_result(session, tournament.overall_market_id, winner)

        market_id = tournament.overall_market_id
        logger.info(f"Tournament {tournament_id} finished, winner: {winner}")
        if market_id is not None:
            report = await self._settle(session, market_id, winner)
            if not report.complete:
                raise SettlementIncomplete(
                    f"Results were saved but market #{market_id} was not settled: {report.error}",
                    tournament_id=tournament_id, market_id=market_id
                )
        return await self.get_tournament(session, tournament_id)

    async def delete_tournament(self, session: AsyncSession, tournament_id: int) -> None:
        """Delete a tournament and its markets once no active bets remain."""
        async with atomic(session):
            tournament = await self.get_tournament(session, tournament_id)
            stmt = select(func.count(Bet.id)).where(
                Bet.tournament_id == tournament_id, Bet.status == BetStatus.ACTIVE.value
            )
            active = (await session.execute(stmt)).scalar() or 0
            if active:
                raise ActiveBetsRemain(
                    f"Cannot delete tournament with {active} active bets.",
                    tournament_id=tournament_id, active_bets=active
                )

            for market in await MarketUtils.list_markets(session, tournament_id=tournament_id):
                await session.delete(market)
            await session.delete(tournament)
            await session.flush()

        logger.info(f"Deleted tournament {tournament_id} and its markets")

    async def _settle(self, session: AsyncSession, market_id: int, result: str) -> SettlementReport:
        try:
            return await self.bets.settle_market(session, market_id)
        except Exception as e:
            # The result is already committed; settlement can be re-run safely
            logger.critical(
                f"Market {market_id} is finished but settlement failed: {e!r}. "
                f"Re-run settlement for this market.",
                exc_info=True
            )
            return SettlementReport(market_id=market_id, result=result, error=str(e) or repr(e))

    @staticmethod
    def _validate_roster(teams: Sequence[str]) -> List[str]:
        cleaned = [team.strip() for team in teams if team and team.strip()]
        if len(cleaned) < 2:
            raise InvalidTournament("At least 2 teams are required.")
        if len(set(cleaned)) != len(cleaned):
            raise InvalidTournament("Team names must be unique.")
        if DRAW_OPTION in cleaned:
            raise InvalidTournament(f"'{DRAW_OPTION}' is reserved and cannot be a team name.")
        return cleaned

    @staticmethod
    def _validate_rankings(rankings: Sequence[Tuple[int, str]], roster: List[str]) -> List[Tuple[int, str]]:
        if not rankings:
            raise InvalidRankings("Rankings are required.")

        ranks = [rank for rank, _ in rankings]
        teams = [team for _, team in rankings]
        for rank in ranks:
            if isinstance(rank, bool) or not isinstance(rank, int) or rank < 1:
                raise InvalidRankings("Ranks must be positive integers.", rank=rank)
        if len(set(ranks)) != len(ranks):
            raise InvalidRankings("Each team must have a unique rank.")
        if 1 not in ranks:
            raise InvalidRankings("Rankings must include a winner at rank 1.")
        if len(set(teams)) != len(teams):
            raise InvalidRankings("Each team can only be ranked once.")
        for team in teams:
            if team not in roster:
                raise UnknownTeam(f"Team '{team}' does not exist in tournament.", team=team)

        return sorted(rankings, key=lambda item: item[0])
