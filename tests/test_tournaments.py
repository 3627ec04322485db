"""
Tests for tournament orchestration.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Market
from utils.accounts import AccountUtils
from utils.db import Database
from utils.errors import (
    ActiveBetsRemain, AlreadySettled, DuplicateTeams, InvalidRankings, InvalidResult, InvalidTournament,
    MarketFinished, MarketNotFound, NotAMatch, SettlementIncomplete, TournamentNotFound, UnknownTeam,
)
from utils.ledger import Ledger
from utils.markets import MarketUtils


async def setup_tournament(database: Database, tournament_manager):
    """Register user 1 with 1000 coins and create a tournament with one match.

    Returns ``(tournament_id, overall_market_id, match_id)``.
    """
    async with database.transaction() as session:
        await AccountUtils.get_or_create_user(session, 1, "user1", 1000)

    start = datetime.utcnow() + timedelta(days=1)
    async with database.get_session() as session:
        tournament = await tournament_manager.create_tournament(
            session, "Cup", ["Alpha", "Bravo", "Charlie"], start, start + timedelta(days=3)
        )
        match = await tournament_manager.create_match(session, tournament.id, "Alpha", "Bravo", start)
        return tournament.id, tournament.overall_market_id, match.id


async def broken_settle(session, market_id):
    raise RuntimeError("database went away")


class TestCreateTournament:
    """Test tournament creation and roster handling."""

    @pytest.mark.asyncio
    async def test_creates_overall_winner_market(self, session: AsyncSession, make_tournament):
        tournament = await make_tournament(teams=("Alpha", "Bravo", "Charlie"))
        assert tournament.team_names() == ["Alpha", "Bravo", "Charlie"]
        assert tournament.status == "upcoming"

        market = await MarketUtils.get_market(session, tournament.overall_market_id)
        assert market.kind == "overall_winner"
        assert market.tournament_id == tournament.id
        assert [(o.name, o.odds) for o in market.options] == [("Alpha", 2.0), ("Bravo", 2.0), ("Charlie", 2.0)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("teams", [["Solo"], ["Alpha", "Alpha"], ["Alpha", "Draw"], ["", "  "]])
    async def test_invalid_rosters(self, session: AsyncSession, tournament_manager, teams):
        start = datetime.utcnow()
        with pytest.raises(InvalidTournament):
            await tournament_manager.create_tournament(session, "Cup", teams, start, start + timedelta(days=1))

    @pytest.mark.asyncio
    async def test_end_before_start(self, session: AsyncSession, tournament_manager):
        start = datetime.utcnow()
        with pytest.raises(InvalidTournament):
            await tournament_manager.create_tournament(session, "Cup", ["Alpha", "Bravo"], start, start)

    @pytest.mark.asyncio
    async def test_get_unknown_tournament(self, session: AsyncSession, tournament_manager):
        with pytest.raises(TournamentNotFound):
            await tournament_manager.get_tournament(session, 999)

    @pytest.mark.asyncio
    async def test_update_teams_syncs_market(self, session: AsyncSession, make_tournament, tournament_manager):
        tournament = await make_tournament(teams=("Alpha", "Bravo"))
        await MarketUtils.record_stake(session, tournament.overall_market_id, "Alpha", 40)

        tournament = await tournament_manager.update_teams(session, tournament.id, ["Alpha", "Bravo", "Delta"])

        assert tournament.team_names() == ["Alpha", "Bravo", "Delta"]
        market = await MarketUtils.get_market(session, tournament.overall_market_id)
        assert market.stakes() == {"Alpha": 40, "Bravo": 0, "Delta": 0}

    @pytest.mark.asyncio
    async def test_set_status_mirrors_market(self, session: AsyncSession, make_tournament, tournament_manager):
        tournament = await make_tournament()
        await tournament_manager.set_status(session, tournament.id, "active")
        market = await MarketUtils.get_market(session, tournament.overall_market_id)
        assert market.status == "active"

    @pytest.mark.asyncio
    async def test_list_tournaments(self, session: AsyncSession, make_tournament, tournament_manager):
        first = await make_tournament(name="First", teams=("Alpha", "Bravo"))
        await make_tournament(name="Second", teams=("Alpha", "Bravo"))
        await tournament_manager.set_tournament_results(session, first.id, [(1, "Alpha"), (2, "Bravo")])

        everything = await tournament_manager.list_tournaments(session)
        running = await tournament_manager.list_tournaments(session, active_only=True)
        assert len(everything) == 2
        assert [t.name for t in running] == ["Second"]


class TestMatches:
    """Test match creation and results."""

    @pytest.mark.asyncio
    async def test_unknown_team(self, session: AsyncSession, make_tournament, tournament_manager):
        tournament = await make_tournament()
        with pytest.raises(UnknownTeam):
            await tournament_manager.create_match(session, tournament.id, "Alpha", "Zulu", datetime.utcnow())

    @pytest.mark.asyncio
    async def test_same_team_twice(self, session: AsyncSession, make_tournament, tournament_manager):
        tournament = await make_tournament()
        with pytest.raises(DuplicateTeams):
            await tournament_manager.create_match(session, tournament.id, "Alpha", "Alpha", datetime.utcnow())

    @pytest.mark.asyncio
    async def test_unknown_tournament(self, session: AsyncSession, tournament_manager):
        with pytest.raises(TournamentNotFound):
            await tournament_manager.create_match(session, 999, "Alpha", "Bravo", datetime.utcnow())

    @pytest.mark.asyncio
    async def test_match_result_rejects_other_teams(self, session: AsyncSession, make_match, tournament_manager):
        market = await make_match("Alpha", "Bravo")
        with pytest.raises(InvalidResult):
            await tournament_manager.set_match_result(session, market.id, "Charlie")

    @pytest.mark.asyncio
    async def test_match_result_on_overall_market(self, session: AsyncSession, make_tournament, tournament_manager):
        tournament = await make_tournament()
        with pytest.raises(NotAMatch):
            await tournament_manager.set_match_result(session, tournament.overall_market_id, "Alpha")

    @pytest.mark.asyncio
    async def test_match_result_twice(self, session: AsyncSession, make_match, tournament_manager):
        market = await make_match()
        await tournament_manager.set_match_result(session, market.id, "Alpha", "3-0")
        with pytest.raises(AlreadySettled):
            await tournament_manager.set_match_result(session, market.id, "Bravo")

    @pytest.mark.asyncio
    async def test_settlement_failure_is_reported(self, database: Database, bet_manager,
                                                  tournament_manager, monkeypatch):
        """Test a failed settlement leaves the result committed and can be re-run."""
        _, _, match_id = await setup_tournament(database, tournament_manager)
        async with database.get_session() as session:
            placed = await bet_manager.place_bet(session, 1, match_id, "Alpha", 100)
        bet_id = placed.bet.id

        original = bet_manager.settle_market
        monkeypatch.setattr(bet_manager, "settle_market", broken_settle)
        async with database.get_session() as session:
            report = await tournament_manager.set_match_result(session, match_id, "Alpha")

        assert not report.complete
        assert "database went away" in report.error
        assert report.result == "Alpha"
        async with database.get_session() as session:
            market = await MarketUtils.get_market(session, match_id)
            assert market.status == "finished"
            assert market.result == "Alpha"
            assert await Ledger.get_balance(session, 1) == 900

        monkeypatch.setattr(bet_manager, "settle_market", original)
        async with database.get_session() as session:
            retry = await bet_manager.settle_market(session, match_id)
        assert retry.complete
        assert retry.settled_count == 1

        async with database.get_session() as session:
            assert await Ledger.get_balance(session, 1) == 1100
            assert (await bet_manager.get_bet(session, bet_id)).status == "won"


class TestTournamentResults:
    """Test final standings and the overall-winner market."""

    @pytest.mark.asyncio
    async def test_results_settle_overall_market(self, session: AsyncSession, make_user, make_tournament,
                                                 bet_manager, tournament_manager):
        await make_user(1, coins=1000)
        await make_user(2, coins=1000)
        tournament = await make_tournament(teams=("Alpha", "Bravo", "Charlie"))
        await bet_manager.place_bet(session, 1, tournament.overall_market_id, "Charlie", 100)
        await bet_manager.place_bet(session, 2, tournament.overall_market_id, "Alpha", 100)

        tournament = await tournament_manager.set_tournament_results(
            session, tournament.id, [(2, "Alpha"), (1, "Charlie"), (3, "Bravo")]
        )

        assert tournament.status == "finished"
        assert [(r.rank, r.team_name) for r in tournament.rankings] == [(1, "Charlie"), (2, "Alpha"), (3, "Bravo")]
        market = await MarketUtils.get_market(session, tournament.overall_market_id)
        assert market.status == "finished"
        assert market.result == "Charlie"
        assert await Ledger.get_balance(session, 1) == 1100
        assert await Ledger.get_balance(session, 2) == 900

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rankings,error", [
        ([], InvalidRankings),
        ([(1, "Alpha"), (1, "Bravo")], InvalidRankings),
        ([(1, "Alpha"), (2, "Alpha")], InvalidRankings),
        ([(0, "Alpha")], InvalidRankings),
        ([(2, "Alpha"), (3, "Bravo")], InvalidRankings),
        ([(1, "Zulu")], UnknownTeam),
    ])
    async def test_invalid_rankings(self, session: AsyncSession, make_tournament, tournament_manager, rankings, error):
        tournament = await make_tournament()
        tournament_id = tournament.id
        with pytest.raises(error):
            await tournament_manager.set_tournament_results(session, tournament_id, rankings)

        tournament = await tournament_manager.get_tournament(session, tournament_id)
        assert tournament.status == "upcoming"
        assert tournament.rankings == []

    @pytest.mark.asyncio
    async def test_results_then_settle_in_new_session(self, database: Database, bet_manager, tournament_manager):
        """Test results committed in one session are settled and visible in the next."""
        tournament_id, overall_id, _ = await setup_tournament(database, tournament_manager)
        async with database.get_session() as session:
            placed = await bet_manager.place_bet(session, 1, overall_id, "Bravo", 100)
        bet_id = placed.bet.id

        async with database.get_session() as session:
            await tournament_manager.set_tournament_results(session, tournament_id, [(1, "Bravo"), (2, "Alpha")])

        async with database.get_session() as session:
            report = await bet_manager.settle_market(session, overall_id)
        assert report.settled_count == 0
        assert report.winning_count == 1
        assert report.total_payout == 200

        async with database.get_session() as session:
            assert await Ledger.get_balance(session, 1) == 1100
            assert (await bet_manager.get_bet(session, bet_id)).status == "won"
            tournament = await tournament_manager.get_tournament(session, tournament_id)
            assert tournament.status == "finished"

    @pytest.mark.asyncio
    async def test_results_settlement_failure_is_raised(self, database: Database, bet_manager,
                                                        tournament_manager, monkeypatch):
        """Test a failed winner-market settlement reaches the caller and can be finished later."""
        tournament_id, overall_id, _ = await setup_tournament(database, tournament_manager)
        async with database.get_session() as session:
            placed = await bet_manager.place_bet(session, 1, overall_id, "Alpha", 100)
        bet_id = placed.bet.id

        original = bet_manager.settle_market
        monkeypatch.setattr(bet_manager, "settle_market", broken_settle)
        async with database.get_session() as session:
            with pytest.raises(SettlementIncomplete) as exc_info:
                await tournament_manager.set_tournament_results(session, tournament_id, [(1, "Alpha"), (2, "Bravo")])

        assert exc_info.value.details == {'tournament_id': tournament_id, 'market_id': overall_id}
        assert "database went away" in exc_info.value.message
        async with database.get_session() as session:
            tournament = await tournament_manager.get_tournament(session, tournament_id)
            assert tournament.status == "finished"
            assert (await bet_manager.get_bet(session, bet_id)).status == "active"
            assert await Ledger.get_balance(session, 1) == 900

        monkeypatch.setattr(bet_manager, "settle_market", original)
        async with database.get_session() as session:
            # Reads first, as the admin commands do, then settles in the same session
            await tournament_manager.get_tournament(session, tournament_id)
            retry = await bet_manager.settle_market(session, overall_id)
        assert retry.settled_count == 1

        async with database.get_session() as session:
            assert await Ledger.get_balance(session, 1) == 1100
            assert (await bet_manager.get_bet(session, bet_id)).status == "won"

    @pytest.mark.asyncio
    async def test_results_only_once(self, session: AsyncSession, make_tournament, tournament_manager):
        tournament = await make_tournament()
        await tournament_manager.set_tournament_results(session, tournament.id, [(1, "Alpha")])
        with pytest.raises(AlreadySettled):
            await tournament_manager.set_tournament_results(session, tournament.id, [(1, "Bravo")])

    @pytest.mark.asyncio
    async def test_finished_tournament_roster_is_frozen(self, session: AsyncSession, make_tournament, tournament_manager):
        tournament = await make_tournament()
        await tournament_manager.set_tournament_results(session, tournament.id, [(1, "Alpha")])
        with pytest.raises(MarketFinished):
            await tournament_manager.update_teams(session, tournament.id, ["Alpha", "Bravo"])


class TestDeleteTournament:
    """Test deleting tournaments."""

    @pytest.mark.asyncio
    async def test_refused_with_active_bets(self, session: AsyncSession, make_user, make_match,
                                            bet_manager, tournament_manager):
        await make_user(1)
        market = await make_match()
        await bet_manager.place_bet(session, 1, market.id, "Alpha", 100)

        with pytest.raises(ActiveBetsRemain):
            await tournament_manager.delete_tournament(session, market.tournament_id)

    @pytest.mark.asyncio
    async def test_deletes_markets(self, session: AsyncSession, make_user, make_match, bet_manager, tournament_manager):
        await make_user(1)
        market = await make_match()
        tournament_id = market.tournament_id
        placed = await bet_manager.place_bet(session, 1, market.id, "Alpha", 100)
        await bet_manager.cancel_bet(session, placed.bet.id, 1)

        market_id = market.id
        await tournament_manager.delete_tournament(session, tournament_id)

        with pytest.raises(TournamentNotFound):
            await tournament_manager.get_tournament(session, tournament_id)
        with pytest.raises(MarketNotFound):
            await MarketUtils.get_market(session, market_id)
        remaining = (await session.execute(select(Market).where(Market.tournament_id == tournament_id))).scalars().all()
        assert remaining == []
