"""
Anti-fraud utilities for detecting suspicious betting activity.
"""

import logging

from utils.config import Config
from utils.store import KeyValueStore

logger = logging.getLogger(__name__)


class AntiFraud:
    """Anti-fraud detection backed by an injected key/value store."""

    def __init__(self, store: KeyValueStore, config: Config):
        self.store = store
        self.config = config

    async def record_bet(self, user_id: int) -> int:
        """Record a bet and return how many bets the user placed in the current window."""
        return await self.store.increment(
            f"bets:{user_id}", 1, ttl=self.config.bet_velocity_window
        )

    async def check_bet_velocity(self, user_id: int) -> tuple[bool, str]:
        """Check for suspicious bet velocity (bets per time window)."""
        count = await self.store.get(f"bets:{user_id}") or 0
        if count >= self.config.bet_velocity_limit:
            return True, "Suspicious bet velocity detected. Please slow down."
        return False, ""

    def check_large_bet(self, amount: int) -> tuple[bool, str]:
        """Check for large bet amounts."""
        if amount > self.config.large_bet_threshold:
            return True, f"Large bet of {amount} coins flagged for review."
        return False, ""

    async def check_bet(self, user_id: int, amount: int) -> tuple[bool, str]:
        """Overall check before a bet is placed.

        Returns ``(blocked, reason)``. Large bets are only logged; a user
        over the velocity limit is blocked until the window expires. Nothing
        is counted here: call ``record_bet`` once the bet has been placed.
        """
        blocked, reason = await self.check_bet_velocity(user_id)
        if blocked:
            logger.warning(f"Blocked bet from user {user_id}: {reason}")
            return True, reason

        flagged, reason = self.check_large_bet(amount)
        if flagged:
            logger.warning(f"User {user_id}: {reason}")

        return False, ""
