from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models import Base
from utils.accounts import AccountUtils
from utils.bets import BetManager
from utils.config import Config
from utils.db import Database, atomic, create_engine
from utils.tournaments import TournamentManager


@pytest_asyncio.fixture()
async def engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session(engine):
    """Provide an AsyncSession connected to an in-memory SQLite database for tests."""
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as sess:  # type: ignore
        yield sess


@pytest_asyncio.fixture()
async def database(tmp_path):
    """File database, so every session gets its own connection."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'wagers.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture()
def config():
    return Config(
        starting_coins=1000,
        min_bet=10,
        house_edge_percent=5.0,
        odds_activity_threshold=100,
        min_odds=1.01,
        max_odds=100.0,
        default_odds=2.0,
        draw_odds=3.0,
        bet_velocity_limit=3,
        bet_velocity_window=60,
        large_bet_threshold=500,
    )


@pytest.fixture()
def bet_manager(config):
    return BetManager(config)


@pytest.fixture()
def tournament_manager(config, bet_manager):
    return TournamentManager(config, bet_manager)


@pytest.fixture()
def make_user(session: AsyncSession):
    """Factory that registers a user with a given balance and commits."""

    async def factory(user_id: int = 1, coins: int = 1000, username: str = "tester"):
        async with atomic(session):
            user = await AccountUtils.get_or_create_user(session, user_id, username, coins)
        return user

    return factory


@pytest.fixture()
def make_tournament(session: AsyncSession, tournament_manager: TournamentManager):
    """Factory that creates a committed tournament with a roster."""

    async def factory(name: str = "Spring Cup", teams=("Alpha", "Bravo", "Charlie")):
        start = datetime.utcnow() + timedelta(days=1)
        return await tournament_manager.create_tournament(
            session, name, list(teams), start, start + timedelta(days=7)
        )

    return factory


@pytest.fixture()
def make_match(session: AsyncSession, tournament_manager: TournamentManager, make_tournament):
    """Factory that creates a committed match market between two roster teams."""

    async def factory(team1: str = "Alpha", team2: str = "Bravo", tournament=None):
        if tournament is None:
            tournament = await make_tournament()
        return await tournament_manager.create_match(
            session, tournament.id, team1, team2, datetime.utcnow() + timedelta(days=2)
        )

    return factory
