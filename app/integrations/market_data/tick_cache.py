"""
Latest-Tick Cache

Last-write-wins store of one Tick per symbol with a staleness bound.

Author: FX Engine Team
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from app.domain.models.tick import Tick

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TickCache:
    """
    Latest tick per symbol.

    One writer (the feed) and many readers. A write swaps the whole frozen
    Tick into the dict in a single assignment, so readers get either the old
    or the new tick and never wait on the writer.

    Usage:
        cache = TickCache(staleness_seconds=30)
        cache.put(Tick("EUR/USD", Decimal("1.1")))
        cache.get_fresh("EUR/USD")   # None once older than 30s
    """

    def __init__(self, staleness_seconds: float, clock: Optional[Clock] = None):
        """
        Initialize cache.

        Args:
            staleness_seconds: Max tick age served by get_fresh()
            clock: Returns current UTC time (injectable for tests)
        """
        if staleness_seconds <= 0:
            raise ValueError("staleness_seconds must be positive")

        self.staleness_seconds = staleness_seconds
        self._clock = clock or utc_now
        self._ticks: Dict[str, Tick] = {}

    def now(self) -> datetime:
        return self._clock()

    def put(self, tick: Tick) -> None:
        """Store tick as the latest for its symbol (arrival order wins)."""
        self._ticks[tick.symbol] = tick

    def get(self, symbol: str) -> Optional[Tick]:
        """Last tick for symbol regardless of age."""
        return self._ticks.get(symbol)

    def is_stale(self, tick: Tick, now: Optional[datetime] = None) -> bool:
        return tick.age_seconds(now or self.now()) > self.staleness_seconds

    def get_fresh(self, symbol: str, now: Optional[datetime] = None) -> Optional[Tick]:
        """
        Last tick for symbol if within the staleness bound.

        Args:
            symbol: Normalized symbol
            now: Reference time (defaults to the cache clock)

        Returns:
            Tick, or None when absent or stale
        """
        tick = self._ticks.get(symbol)
        if tick is None or self.is_stale(tick, now):
            return None
        return tick

    def snapshot(self) -> Dict[str, Tick]:
        """Shallow copy of every cached tick, stale ones included."""
        return dict(self._ticks)

    def clear(self) -> None:
        self._ticks.clear()

    def __len__(self) -> int:
        return len(self._ticks)
