"""
Odds engine: recomputes option odds from the stake distribution of a market.

All functions here are pure; persistence lives in ``utils.markets``.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Tuple


@dataclass(frozen=True)
class OddsSettings:
    """Parameters of the house-edge odds model."""
    house_edge_percent: float = 5.0
    activity_threshold: int = 100  # Minimum total stake before odds move
    min_odds: float = 1.01
    max_odds: float = 100.0


DEFAULT_SETTINGS = OddsSettings()


def calculate_odds(
    total_stake: int,
    option_stake: int,
    current_odds: float,
    settings: OddsSettings = DEFAULT_SETTINGS,
) -> float:
    """Return new odds for one option.

    Thin markets (total below the activity threshold) and options with no
    stake keep their current odds.
    """
    if total_stake < settings.activity_threshold or option_stake <= 0 or total_stake <= 0:
        return current_odds

    probability = option_stake / total_stake
    fair_odds = 1 / probability
    adjusted = fair_odds / (1 + settings.house_edge_percent / 100)

    clamped = max(settings.min_odds, min(settings.max_odds, adjusted))
    return round(clamped, 2)


def recalculate(
    options: Iterable[Tuple[str, int, float]],
    total_stake: int,
    settings: OddsSettings = DEFAULT_SETTINGS,
) -> Dict[str, float]:
    """Recalculate odds for ``(name, stake, current_odds)`` triples.

    Returns a mapping of option name to new odds, in input order.
    """
    return {
        name: calculate_odds(total_stake, stake, current, settings)
        for name, stake, current in options
    }


def potential_payout(amount: int, odds: float) -> int:
    """Payout of a winning bet: ``amount * odds`` rounded half up."""
    value = Decimal(amount) * Decimal(str(odds))
    return int(value.quantize(Decimal('1'), rounding=ROUND_HALF_UP))
