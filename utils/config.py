"""
Configuration loaded from environment variables.
"""

import os
from typing import Optional

from dotenv import load_dotenv

from utils.odds import OddsSettings


def _int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value == '':
        return default
    return int(value)


def _float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == '':
        return default
    return float(value)


class Config:
    """Bot configuration.

    Values come from the process environment (and a ``.env`` file if one is
    present). Keyword overrides take precedence, which is what tests use.
    """

    def __init__(self, **overrides):
        load_dotenv()

        self.discord_token: Optional[str] = os.getenv('DISCORD_TOKEN')
        self.database_url: str = os.getenv('DATABASE_URL', 'sqlite+aiosqlite:///wagerbot.db')
        self.guild_id: Optional[int] = _int('GUILD_ID', None)
        self.owner_id: Optional[int] = _int('OWNER_ID', None)
        self.log_level: str = os.getenv('LOG_LEVEL', 'INFO')

        # Economy
        self.starting_coins: int = _int('STARTING_COINS', 1000)
        self.min_bet: int = _int('MIN_BET', 10)

        # Odds
        self.house_edge_percent: float = _float('HOUSE_EDGE_PERCENT', 5.0)
        self.odds_activity_threshold: int = _int('ODDS_ACTIVITY_THRESHOLD', 100)
        self.min_odds: float = _float('MIN_ODDS', 1.01)
        self.max_odds: float = _float('MAX_ODDS', 100.0)
        self.default_odds: float = _float('DEFAULT_ODDS', 2.0)
        self.draw_odds: float = _float('DRAW_ODDS', 3.0)

        # Anti-fraud
        self.bet_velocity_limit: int = _int('BET_VELOCITY_LIMIT', 20)
        self.bet_velocity_window: int = _int('BET_VELOCITY_WINDOW', 300)
        self.large_bet_threshold: int = _int('LARGE_BET_THRESHOLD', 10000)

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown config option: {key}")
            setattr(self, key, value)

    def odds_settings(self) -> OddsSettings:
        """Build odds engine settings from this config."""
        return OddsSettings(
            house_edge_percent=self.house_edge_percent,
            activity_threshold=self.odds_activity_threshold,
            min_odds=self.min_odds,
            max_odds=self.max_odds,
        )
