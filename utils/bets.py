"""
Bet lifecycle: placing, cancelling, settling and voiding wagers.

Every status change on a bet is a compare-and-set from ``active``, so a bet
is settled, cancelled or voided at most once no matter how many callers
race on it. Coins only move when the status change actually applied.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from models import Bet, BetStatus, EventStatus, Market
from utils.accounts import AccountUtils
from utils.config import Config
from utils.db import atomic
from utils.errors import (
    AccountBanned, BelowMinimumStake, BetNotFound, BettingError, Forbidden, InvalidAmount,
    InvalidState, MarketClosed, MarketStarted, NotReadyToSettle, UserNotFound,
)
from utils.ledger import Ledger
from utils.markets import MarketUtils
from utils.odds import potential_payout

logger = logging.getLogger(__name__)


@dataclass
class PlacedBet:
    bet: Bet
    new_balance: int
    replayed: bool = False  # True when returned from an earlier call with the same key


@dataclass
class CancelledBet:
    bet: Bet
    refund_amount: int
    new_balance: int


@dataclass
class SettlementReport:
    """Outcome of a settlement run.

    ``settled_count`` and ``credited`` describe this run only. The winning
    and losing counts and ``total_payout`` are totals for the market, so
    repeated runs report the same figures.
    """
    market_id: int
    result: Optional[str]
    settled_count: int = 0
    winning_count: int = 0
    losing_count: int = 0
    void_count: int = 0
    total_payout: int = 0
    credited: int = 0
    error: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.error is None


@dataclass
class BetPage:
    bets: List[Bet]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class BetManager:
    """Creates, cancels and settles bets against markets and the ledger."""

    def __init__(self, config: Config):
        self.config = config
        self.odds_settings = config.odds_settings()

    async def place_bet(
        self,
        session: AsyncSession,
        user_id: int,
        market_id: int,
        selection: str,
        amount: int,
        idempotency_key: Optional[str] = None
    ) -> PlacedBet:
        """Place a bet, debiting the user's balance.

        The debit and the bet row are committed together or not at all.
        Stake recording and odds recalculation run in a savepoint; if they
        fail the bet still stands and ``MarketUtils.reconcile_stakes`` can
        repair the totals later.
        """
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmount(amount=amount)

        async with atomic(session):
            if idempotency_key:
                previous = await self._find_by_key(session, user_id, idempotency_key)
                if previous is not None:
                    balance = await Ledger.get_balance(session, user_id)
                    return PlacedBet(bet=previous, new_balance=balance, replayed=True)

            user = await AccountUtils.get_user(session, user_id)
            if user is None:
                raise UserNotFound(user_id=user_id)
            if user.banned:
                raise AccountBanned(user_id=user_id, reason=user.ban_reason)

            market = await MarketUtils.get_market(session, market_id)
            if not MarketUtils.is_open_for_wagering(market):
                raise MarketClosed(market_id=market_id, status=market.status)
            option = MarketUtils.get_option(market, selection)

            if amount < self.config.min_bet:
                raise BelowMinimumStake(
                    f"Minimum bet is {self.config.min_bet} coins.",
                    amount=amount, minimum=self.config.min_bet
                )

            odds = option.odds
            bet = Bet(
                user_id=user_id,
                market_id=market.id,
                tournament_id=market.tournament_id,
                selection=selection,
                amount=amount,
                odds=odds,
                potential_payout=potential_payout(amount, odds),
                status=BetStatus.ACTIVE.value,
                idempotency_key=idempotency_key,
            )
            session.add(bet)
            await session.flush()

            new_balance = await Ledger.debit(
                session, user_id, amount, 'bet',
                f"Bet on {selection} in {market.title}", bet_id=bet.id
            )

            await self._record_stake(session, market_id, selection, amount)

        logger.info(
            f"Bet {bet.id} placed: user={user_id} market={market_id} selection='{selection}' "
            f"amount={amount} odds={odds}"
        )
        return PlacedBet(bet=bet, new_balance=new_balance)

    async def cancel_bet(self, session: AsyncSession, bet_id: int, user_id: int) -> CancelledBet:
        """Cancel an active bet on a market that has not started, refunding the stake."""
        async with atomic(session):
            bet = await self._get_bet(session, bet_id)
            if bet.user_id != user_id:
                raise Forbidden(bet_id=bet_id)
            if bet.status != BetStatus.ACTIVE.value:
                raise InvalidState(bet_id=bet_id, status=bet.status)

            user = await AccountUtils.get_user(session, user_id)
            if user is None:
                raise UserNotFound(user_id=user_id)
            if user.banned:
                raise AccountBanned(user_id=user_id, reason=user.ban_reason)

            market = await MarketUtils.get_market(session, bet.market_id)
            if market.status != EventStatus.UPCOMING.value:
                raise MarketStarted(bet_id=bet_id, market_status=market.status)

            now = datetime.utcnow()
            market_upcoming = exists().where(
                Market.id == Bet.market_id, Market.status == EventStatus.UPCOMING.value
            ).correlate(Bet)
            applied = await self._transition(
                session, bet_id, BetStatus.CANCELLED, now, market_upcoming
            )
            if not applied:
                # Lost a race with settlement or a status change
                bet = await self._get_bet(session, bet_id)
                if bet.status != BetStatus.ACTIVE.value:
                    raise InvalidState(bet_id=bet_id, status=bet.status)
                raise MarketStarted(bet_id=bet_id)

            new_balance = await Ledger.credit(
                session, user_id, bet.amount, 'refund', f"Cancelled bet #{bet_id}", bet_id=bet_id
            )
            await MarketUtils.reverse_stake(session, bet.market_id, bet.selection, bet.amount)
            await MarketUtils.recalculate_odds(session, bet.market_id, self.odds_settings)
            bet = await self._get_bet(session, bet_id)

        logger.info(f"Bet {bet_id} cancelled by user {user_id}, refunded {bet.amount}")
        return CancelledBet(bet=bet, refund_amount=bet.amount, new_balance=new_balance)

    async def settle_market(self, session: AsyncSession, market_id: int) -> SettlementReport:
        """Resolve every active bet on a finished market.

        Safe to call repeatedly: bets that are no longer active are skipped
        and nobody is credited twice.
        """
        async with atomic(session):
            market = await MarketUtils.get_market(session, market_id)
            if market.status != EventStatus.FINISHED.value or not market.result:
                raise NotReadyToSettle(market_id=market_id, status=market.status)

            report = SettlementReport(market_id=market_id, result=market.result)
            now = datetime.utcnow()

            for bet in await self._active_bets(session, market_id):
                won = bet.selection == market.result
                status = BetStatus.WON if won else BetStatus.LOST
                if not await self._transition(session, bet.id, status, now):
                    continue

                report.settled_count += 1
                if won:
                    await Ledger.credit(
                        session, bet.user_id, bet.potential_payout, 'payout',
                        f"Won bet #{bet.id} on {bet.selection}", bet_id=bet.id
                    )
                    report.credited += bet.potential_payout

            await self._fill_totals(session, report)

        logger.info(
            f"Settled market {market_id} ({market.result}): {report.settled_count} bets this run, "
            f"{report.winning_count} won, {report.losing_count} lost, {report.credited} coins credited"
        )
        return report

    async def void_market(self, session: AsyncSession, market_id: int) -> SettlementReport:
        """Cancel a market without a result and refund every active bet."""
        async with atomic(session):
            market = await MarketUtils.get_market(session, market_id, for_update=True)
            if market.status == EventStatus.FINISHED.value:
                raise InvalidState("A finished market cannot be voided.", market_id=market_id)

            market.status = EventStatus.CANCELLED.value
            await session.flush()

            report = SettlementReport(market_id=market_id, result=None)
            now = datetime.utcnow()
            for bet in await self._active_bets(session, market_id):
                if not await self._transition(session, bet.id, BetStatus.VOID, now):
                    continue
                await Ledger.credit(
                    session, bet.user_id, bet.amount, 'void_refund',
                    f"Market voided, bet #{bet.id} refunded", bet_id=bet.id
                )
                await MarketUtils.reverse_stake(session, market_id, bet.selection, bet.amount)
                report.settled_count += 1
                report.credited += bet.amount

            await self._fill_totals(session, report)

        logger.info(f"Voided market {market_id}: refunded {report.settled_count} bets ({report.credited} coins)")
        return report

    async def get_bet(
        self,
        session: AsyncSession,
        bet_id: int,
        user_id: Optional[int] = None,
        is_admin: bool = False
    ) -> Bet:
        """Get a bet, checking ownership unless the caller is an admin."""
        bet = await self._get_bet(session, bet_id)
        if not is_admin and user_id is not None and bet.user_id != user_id:
            raise Forbidden(bet_id=bet_id)
        return bet

    async def get_user_bets(
        self,
        session: AsyncSession,
        user_id: int,
        status: Optional[str] = None,
        tournament_id: Optional[int] = None,
        market_id: Optional[int] = None,
        page: int = 1,
        limit: int = 20
    ) -> BetPage:
        """A page of a user's bets, newest first."""
        page = max(page, 1)
        limit = max(1, min(limit, 100))

        filters = [Bet.user_id == user_id]
        if status is not None:
            filters.append(Bet.status == status)
        if tournament_id is not None:
            filters.append(Bet.tournament_id == tournament_id)
        if market_id is not None:
            filters.append(Bet.market_id == market_id)

        total = (await session.execute(select(func.count(Bet.id)).where(*filters))).scalar() or 0
        stmt = (
            select(Bet)
            .where(*filters)
            .order_by(Bet.created_at.desc(), Bet.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return BetPage(bets=list(result.scalars().all()), total=total, page=page, limit=limit)

    async def _record_stake(self, session: AsyncSession, market_id: int, selection: str, amount: int) -> None:
        try:
            async with session.begin_nested():
                await MarketUtils.record_stake(session, market_id, selection, amount)
                await MarketUtils.recalculate_odds(session, market_id, self.odds_settings)
        except (SQLAlchemyError, BettingError):
            logger.exception(
                f"Failed to record stake of {amount} on market {market_id} option '{selection}'; "
                f"run reconcile to repair market totals"
            )

    async def _transition(
        self,
        session: AsyncSession,
        bet_id: int,
        status: BetStatus,
        settled_at: datetime,
        *criteria
    ) -> bool:
        stmt = (
            update(Bet)
            .where(Bet.id == bet_id, Bet.status == BetStatus.ACTIVE.value, *criteria)
            .values(status=status.value, settled_at=settled_at)
            .returning(Bet.id)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.scalar_one_or_none() is None:
            return False

        # Keep an already-loaded Bet in step with the database row
        bet = session.identity_map.get(session.identity_key(Bet, bet_id))
        if bet is not None:
            set_committed_value(bet, 'status', status.value)
            set_committed_value(bet, 'settled_at', settled_at)
        return True

    async def _get_bet(self, session: AsyncSession, bet_id: int) -> Bet:
        stmt = select(Bet).where(Bet.id == bet_id).execution_options(populate_existing=True)
        result = await session.execute(stmt)
        bet = result.scalar_one_or_none()
        if bet is None:
            raise BetNotFound(bet_id=bet_id)
        return bet

    async def _find_by_key(self, session: AsyncSession, user_id: int, key: str) -> Optional[Bet]:
        stmt = select(Bet).where(Bet.user_id == user_id, Bet.idempotency_key == key)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _active_bets(self, session: AsyncSession, market_id: int) -> List[Bet]:
        stmt = (
            select(Bet)
            .where(Bet.market_id == market_id, Bet.status == BetStatus.ACTIVE.value)
            .order_by(Bet.id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def _fill_totals(self, session: AsyncSession, report: SettlementReport) -> None:
        stmt = (
            select(Bet.status, func.count(Bet.id), func.coalesce(func.sum(Bet.potential_payout), 0))
            .where(Bet.market_id == report.market_id)
            .group_by(Bet.status)
        )
        result = await session.execute(stmt)
        for status, count, payout in result.all():
            if status == BetStatus.WON.value:
                report.winning_count = count
                report.total_payout = payout
            elif status == BetStatus.LOST.value:
                report.losing_count = count
            elif status == BetStatus.VOID.value:
                report.void_count = count
