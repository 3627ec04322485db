"""
Key/value store used for short-lived counters such as bet velocity.

The bot builds one store at startup and hands it to whichever component
needs it.
"""

import asyncio
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple


class KeyValueStore(Protocol):
    """Capability interface for a small expiring key/value store."""

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ...

    async def increment(self, key: str, amount: int = 1, ttl: Optional[float] = None) -> int:
        ...


class MemoryStore:
    """In-process ``KeyValueStore`` with per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            return self._get(key)

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        async with self._lock:
            self._sweep()
            self._data[key] = (value, self._expiry(ttl))

    async def increment(self, key: str, amount: int = 1, ttl: Optional[float] = None) -> int:
        """Add to a counter. ``ttl`` only applies when the counter is created."""
        async with self._lock:
            self._sweep()
            current = self._get(key)
            if current is None:
                value = amount
                expires = self._expiry(ttl)
            else:
                value = int(current) + amount
                expires = self._data[key][1]
            self._data[key] = (value, expires)
            return value

    def _get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires = entry
        if expires is not None and self._clock() >= expires:
            del self._data[key]
            return None
        return value

    def _sweep(self) -> None:
        """Drop every expired entry."""
        now = self._clock()
        expired = [key for key, (_, expires) in self._data.items() if expires is not None and now >= expires]
        for key in expired:
            del self._data[key]

    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        return self._clock() + ttl if ttl is not None else None
