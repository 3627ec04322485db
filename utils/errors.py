"""
Error hierarchy for betting operations.

Every error raised by the core is a ``BettingError`` subclass carrying a
``kind`` (how the caller should treat it), a stable ``code`` and a dict of
structured ``details``. The command layer matches on these to build replies.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """How a failure should be treated by the caller."""
    VALIDATION = 'validation'  # Bad input; report, never retry
    STATE = 'state'  # Definitive rejection given current state
    CONSISTENCY = 'consistency'  # Partially applied; operator must re-run


class BettingError(Exception):
    """Base class for all betting core errors."""

    kind: ErrorKind = ErrorKind.VALIDATION
    code: str = 'betting_error'
    default_message: str = 'Betting operation failed.'

    def __init__(self, message: Optional[str] = None, **details: Any):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'code': self.code,
            'message': self.message,
            'details': self.details,
        }


# Validation errors

class InvalidAmount(BettingError):
    code = 'invalid_amount'
    default_message = 'Amount must be a positive whole number of coins.'


class BelowMinimumStake(BettingError):
    code = 'below_minimum_stake'
    default_message = 'Bet amount is below the minimum stake.'


class UnknownOption(BettingError):
    code = 'unknown_option'
    default_message = 'That option does not exist on this market.'


class InvalidResult(BettingError):
    code = 'invalid_result'
    default_message = 'Result must be one of the market options.'


class InvalidOptions(BettingError):
    code = 'invalid_options'
    default_message = 'Invalid set of market options.'


class UnknownTeam(BettingError):
    code = 'unknown_team'
    default_message = 'Team is not part of this tournament.'


class DuplicateTeams(BettingError):
    code = 'duplicate_teams'
    default_message = 'A match needs two different teams.'


class InvalidRankings(BettingError):
    code = 'invalid_rankings'
    default_message = 'Rankings are invalid.'


class InvalidTournament(BettingError):
    code = 'invalid_tournament'
    default_message = 'Tournament data is invalid.'


class InvalidStatus(BettingError):
    code = 'invalid_status'
    default_message = 'That status change is not allowed.'


class NotAMatch(BettingError):
    code = 'not_a_match'
    default_message = 'This operation is only valid for match markets.'


# Resource-state errors

class UserNotFound(BettingError):
    kind = ErrorKind.STATE
    code = 'user_not_found'
    default_message = 'User not found.'


class MarketNotFound(BettingError):
    kind = ErrorKind.STATE
    code = 'market_not_found'
    default_message = 'Market not found.'


class TournamentNotFound(BettingError):
    kind = ErrorKind.STATE
    code = 'tournament_not_found'
    default_message = 'Tournament not found.'


class BetNotFound(BettingError):
    kind = ErrorKind.STATE
    code = 'not_found'
    default_message = 'Bet not found.'


class Forbidden(BettingError):
    kind = ErrorKind.STATE
    code = 'forbidden'
    default_message = 'You do not own this bet.'


class AccountBanned(BettingError):
    kind = ErrorKind.STATE
    code = 'account_banned'
    default_message = 'This account is banned from betting.'


class MarketClosed(BettingError):
    kind = ErrorKind.STATE
    code = 'market_closed'
    default_message = 'This market is not accepting bets.'


class MarketStarted(BettingError):
    kind = ErrorKind.STATE
    code = 'market_started'
    default_message = 'Bets cannot be cancelled after the market has started.'


class MarketFinished(BettingError):
    kind = ErrorKind.STATE
    code = 'market_finished'
    default_message = 'This market is finished and can no longer be modified.'


class InvalidState(BettingError):
    kind = ErrorKind.STATE
    code = 'invalid_state'
    default_message = 'Only active bets can be changed.'


class AlreadySettled(BettingError):
    kind = ErrorKind.STATE
    code = 'already_settled'
    default_message = 'A result has already been declared.'


class NotReadyToSettle(BettingError):
    kind = ErrorKind.STATE
    code = 'not_ready_to_settle'
    default_message = 'Market has no declared result yet.'


class InsufficientFunds(BettingError):
    kind = ErrorKind.STATE
    code = 'insufficient_funds'
    default_message = 'Insufficient coins.'


class ActiveBetsRemain(BettingError):
    kind = ErrorKind.STATE
    code = 'active_bets_remain'
    default_message = 'There are still active bets.'


# Consistency-risk errors

class SettlementIncomplete(BettingError):
    kind = ErrorKind.CONSISTENCY
    code = 'settlement_incomplete'
    default_message = 'Result was declared but settlement did not complete.'


def all_error_types() -> list:
    """Every concrete error class, used to check boundary mappings."""
    found = []
    pending = list(BettingError.__subclasses__())
    while pending:
        cls = pending.pop()
        found.append(cls)
        pending.extend(cls.__subclasses__())
    return found
