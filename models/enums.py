"""
Status and kind enumerations stored as plain strings.
"""

from enum import Enum


class EventStatus(str, Enum):
    """Lifecycle status shared by tournaments and markets."""
    UPCOMING = 'upcoming'
    ACTIVE = 'active'
    FINISHED = 'finished'
    CANCELLED = 'cancelled'


class MarketKind(str, Enum):
    """Kind of wagering market."""
    MATCH = 'match'
    OVERALL_WINNER = 'overall_winner'


class BetStatus(str, Enum):
    """Lifecycle status of a single bet."""
    ACTIVE = 'active'
    WON = 'won'
    LOST = 'lost'
    CANCELLED = 'cancelled'
    VOID = 'void'


OPEN_STATUSES = (EventStatus.UPCOMING.value, EventStatus.ACTIVE.value)
DRAW_OPTION = 'Draw'
