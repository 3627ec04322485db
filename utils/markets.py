"""
Market state: options, accumulated stakes, odds, status and results.

Stake changes are applied as relative increments so concurrent writers
never lose an update, and the option stake and the market total always
move by the same delta inside one transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import Bet, BetStatus, EventStatus, Market, MarketKind, MarketOption
from models.enums import DRAW_OPTION, OPEN_STATUSES
from utils.db import atomic
from utils.errors import (
    AlreadySettled, InvalidAmount, InvalidOptions, InvalidResult, InvalidStatus,
    MarketClosed, MarketFinished, MarketNotFound, UnknownOption,
)
from utils.odds import DEFAULT_SETTINGS, OddsSettings, recalculate

logger = logging.getLogger(__name__)


@dataclass
class OptionSummary:
    name: str
    odds: float
    stake: int
    bet_count: int = 0
    amount: int = 0
    potential_payout: int = 0  # Liability of still-active bets


@dataclass
class MarketSummary:
    market_id: int
    title: str
    status: str
    result: Optional[str]
    total_stake: int
    total_bets: int
    total_amount: int
    potential_payout: int
    by_status: Dict[str, int] = field(default_factory=dict)
    options: List[OptionSummary] = field(default_factory=list)


class MarketUtils:
    """Utility class for market state operations."""

    @staticmethod
    async def get_market(session: AsyncSession, market_id: int, for_update: bool = False) -> Market:
        """Load a market and its options fresh from the database."""
        stmt = select(Market).where(Market.id == market_id).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        market = result.scalar_one_or_none()
        if market is None:
            raise MarketNotFound(market_id=market_id)
        return market

    @staticmethod
    def get_option(market: Market, name: str) -> MarketOption:
        """Get an option by name or raise ``UnknownOption``."""
        for option in market.options:
            if option.name == name:
                return option
        raise UnknownOption(
            f"'{name}' is not an option on this market.",
            option=name, available=market.option_names()
        )

    @staticmethod
    def is_open_for_wagering(market: Market) -> bool:
        return market.status in OPEN_STATUSES

    @staticmethod
    async def list_markets(
        session: AsyncSession,
        tournament_id: Optional[int] = None,
        kind: Optional[str] = None,
        status: Optional[str] = None,
        open_only: bool = False
    ) -> List[Market]:
        """List markets ordered by event date."""
        stmt = select(Market).order_by(Market.event_date, Market.id)
        if tournament_id is not None:
            stmt = stmt.where(Market.tournament_id == tournament_id)
        if kind is not None:
            stmt = stmt.where(Market.kind == kind)
        if status is not None:
            stmt = stmt.where(Market.status == status)
        if open_only:
            stmt = stmt.where(Market.status.in_(OPEN_STATUSES))
        result = await session.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().all())

    @staticmethod
    async def create_market(
        session: AsyncSession,
        tournament_id: int,
        kind: MarketKind,
        title: str,
        event_date: datetime,
        options: Sequence[Tuple[str, float]],
        description: Optional[str] = None,
        team1: Optional[str] = None,
        team2: Optional[str] = None,
        status: str = EventStatus.UPCOMING.value
    ) -> Market:
        """Create a market with the given ``(name, odds)`` options."""
        MarketUtils._validate_options(options, DEFAULT_SETTINGS.min_odds)
        market = Market(
            tournament_id=tournament_id,
            kind=kind.value,
            title=title,
            description=description,
            event_date=event_date,
            status=status,
            team1=team1,
            team2=team2,
            total_stake=0,
            options=[
                MarketOption(name=name, odds=odds, position=idx, stake=0)
                for idx, (name, odds) in enumerate(options)
            ],
        )
        async with atomic(session):
            session.add(market)
            await session.flush()
        return market

    @staticmethod
    async def record_stake(session: AsyncSession, market_id: int, option_name: str, amount: int) -> None:
        """Add a bet's stake to an option and to the market total."""
        if amount <= 0:
            raise InvalidAmount(amount=amount)

        async with atomic(session):
            market = await MarketUtils.get_market(session, market_id)
            MarketUtils.get_option(market, option_name)

            stmt = (
                update(Market)
                .where(Market.id == market_id, Market.status.in_(OPEN_STATUSES))
                .values(total_stake=Market.total_stake + amount)
                .returning(Market.id)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.scalar_one_or_none() is None:
                raise MarketClosed(market_id=market_id, status=market.status)

            await session.execute(
                update(MarketOption)
                .where(MarketOption.market_id == market_id, MarketOption.name == option_name)
                .values(stake=MarketOption.stake + amount)
                .execution_options(synchronize_session=False)
            )

    @staticmethod
    async def reverse_stake(session: AsyncSession, market_id: int, option_name: str, amount: int) -> int:
        """Remove a bet's contribution from an option, floored at zero.

        Returns the amount actually removed; the market total drops by the
        same amount.
        """
        async with atomic(session):
            market = await MarketUtils.get_market(session, market_id, for_update=True)
            option = MarketUtils.get_option(market, option_name)
            removed = min(option.stake, amount)
            if removed <= 0:
                return 0

            await session.execute(
                update(MarketOption)
                .where(MarketOption.id == option.id)
                .values(stake=MarketOption.stake - removed)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                update(Market)
                .where(Market.id == market_id)
                .values(total_stake=Market.total_stake - removed)
                .execution_options(synchronize_session=False)
            )
        if removed < amount:
            logger.warning(
                f"Stake on market {market_id} option '{option_name}' was {removed}, "
                f"less than the {amount} being reversed"
            )
        return removed

    @staticmethod
    async def declare_result(
        session: AsyncSession,
        market_id: int,
        winning_option: str,
        score: Optional[str] = None
    ) -> Market:
        """Set the result and mark the market finished (exactly once)."""
        async with atomic(session):
            market = await MarketUtils.get_market(session, market_id)
            if market.status == EventStatus.FINISHED.value:
                raise AlreadySettled(market_id=market_id, result=market.result)
            if market.status == EventStatus.CANCELLED.value:
                raise MarketClosed("Cannot declare a result for a cancelled market.", market_id=market_id)
            if winning_option not in market.option_names():
                raise InvalidResult(
                    f"'{winning_option}' is not an option on this market.",
                    result=winning_option, available=market.option_names()
                )

            stmt = (
                update(Market)
                .where(Market.id == market_id, Market.status.in_(OPEN_STATUSES))
                .values(status=EventStatus.FINISHED.value, result=winning_option, score=score)
                .returning(Market.id)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.scalar_one_or_none() is None:
                raise AlreadySettled(market_id=market_id)

            market = await MarketUtils.get_market(session, market_id)

        logger.info(f"Market {market_id} result declared: {winning_option}" + (f" ({score})" if score else ""))
        return market

    @staticmethod
    async def set_options(
        session: AsyncSession,
        market_id: int,
        options: Sequence[Tuple[str, float]],
        min_odds: float = DEFAULT_SETTINGS.min_odds
    ) -> Market:
        """Replace the option list of a market.

        Options that keep their name keep their accumulated stake. Removing
        an option that already holds stake is rejected.
        """
        MarketUtils._validate_options(options, min_odds)
        names = [name for name, _ in options]

        async with atomic(session):
            market = await MarketUtils.get_market(session, market_id, for_update=True)
            if market.status == EventStatus.FINISHED.value:
                raise MarketFinished(market_id=market_id)

            if market.kind == MarketKind.MATCH.value:
                required = {market.team1, market.team2, DRAW_OPTION}
                if set(names) != required or len(names) != 3:
                    raise InvalidOptions(
                        f"Match markets must have exactly these options: {market.team1}, {market.team2}, {DRAW_OPTION}.",
                        required=sorted(required)
                    )

            existing = {option.name: option for option in market.options}
            for name, option in existing.items():
                if name not in names and option.stake > 0:
                    raise InvalidOptions(
                        f"Option '{name}' has {option.stake} coins staked and cannot be removed.",
                        option=name
                    )

            kept = []
            for idx, (name, odds) in enumerate(options):
                option = existing.get(name)
                if option is None:
                    option = MarketOption(name=name, stake=0)
                option.odds = odds
                option.position = idx
                kept.append(option)
            market.options = kept
            await session.flush()

        return await MarketUtils.get_market(session, market_id)

    @staticmethod
    async def set_status(session: AsyncSession, market_id: int, status: str) -> Market:
        """Move a market between upcoming and active."""
        if status not in OPEN_STATUSES:
            raise InvalidStatus(
                "Markets are finished by declaring a result and cancelled by voiding them.",
                status=status
            )

        async with atomic(session):
            market = await MarketUtils.get_market(session, market_id)
            if not MarketUtils.is_open_for_wagering(market):
                raise MarketFinished(market_id=market_id, status=market.status)
            market.status = status
            await session.flush()

        logger.info(f"Market {market_id} status set to {status}")
        return market

    @staticmethod
    async def recalculate_odds(
        session: AsyncSession,
        market_id: int,
        settings: OddsSettings = DEFAULT_SETTINGS
    ) -> Dict[str, float]:
        """Recompute and persist odds for every option of an open market."""
        async with atomic(session):
            market = await MarketUtils.get_market(session, market_id)
            if not MarketUtils.is_open_for_wagering(market):
                return {}

            new_odds = recalculate(
                ((option.name, option.stake, option.odds) for option in market.options),
                market.total_stake,
                settings,
            )
            for option in market.options:
                if option.odds != new_odds[option.name]:
                    option.odds = new_odds[option.name]
            await session.flush()

        return new_odds

    @staticmethod
    async def reconcile_stakes(session: AsyncSession, market_id: int) -> Dict[str, int]:
        """Rebuild option stakes and the market total from active bets."""
        async with atomic(session):
            market = await MarketUtils.get_market(session, market_id, for_update=True)
            stmt = (
                select(Bet.selection, func.coalesce(func.sum(Bet.amount), 0))
                .where(Bet.market_id == market_id, Bet.status == BetStatus.ACTIVE.value)
                .group_by(Bet.selection)
            )
            result = await session.execute(stmt)
            staked = {selection: total for selection, total in result.all()}

            unknown = set(staked) - set(market.option_names())
            if unknown:
                logger.warning(f"Market {market_id} has active bets on unknown options: {sorted(unknown)}")

            stakes = {option.name: staked.get(option.name, 0) for option in market.options}
            for option in market.options:
                option.stake = stakes[option.name]
            market.total_stake = sum(stakes.values())
            await session.flush()

        logger.info(f"Reconciled stakes for market {market_id}: {stakes}")
        return stakes

    @staticmethod
    async def market_summary(session: AsyncSession, market_id: int) -> MarketSummary:
        """Admin statistics for a market, broken down by option and status."""
        market = await MarketUtils.get_market(session, market_id)
        result = await session.execute(select(Bet).where(Bet.market_id == market_id))
        bets = list(result.scalars().all())

        options = {
            option.name: OptionSummary(name=option.name, odds=option.odds, stake=option.stake)
            for option in market.options
        }
        by_status = {status.value: 0 for status in BetStatus}
        potential = 0
        for bet in bets:
            by_status[bet.status] = by_status.get(bet.status, 0) + 1
            active = bet.status == BetStatus.ACTIVE.value
            if active:
                potential += bet.potential_payout
            summary = options.get(bet.selection)
            if summary is not None:
                summary.bet_count += 1
                summary.amount += bet.amount
                if active:
                    summary.potential_payout += bet.potential_payout

        return MarketSummary(
            market_id=market.id,
            title=market.title,
            status=market.status,
            result=market.result,
            total_stake=market.total_stake,
            total_bets=len(bets),
            total_amount=sum(bet.amount for bet in bets),
            potential_payout=potential,
            by_status=by_status,
            options=list(options.values()),
        )

    @staticmethod
    def _validate_options(options: Sequence[Tuple[str, float]], min_odds: float) -> None:
        if not options:
            raise InvalidOptions("At least one option is required.")
        seen = set()
        for name, odds in options:
            if not name or not name.strip():
                raise InvalidOptions("Option names cannot be empty.")
            if name in seen:
                raise InvalidOptions(f"Duplicate option '{name}'.", option=name)
            if odds < min_odds:
                raise InvalidOptions(f"Odds for '{name}' must be at least {min_odds}.", option=name, odds=odds)
            seen.add(name)
