"""
Price Feed Base Classes

Abstract interface for push-based price feeds, so the engine can run
against the socket.io channel in production and an in-memory feed in tests.

Author: FX Engine Team
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from app.domain.models.tick import Tick
from app.integrations.market_data.tick_cache import TickCache
from app.utils.logger import get_logger

logger = get_logger(__name__)

TickCallback = Callable[[Tick], Any]


class Subscription:
    """Handle returned by PriceFeed.subscribe(); cancel() detaches the callback."""

    def __init__(self, feed: "PriceFeed", callback: TickCallback):
        self._feed = feed
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._feed._remove_subscription(self)


class PriceFeed(ABC):
    """
    Abstract base class for price feeds.

    Subclasses own the transport and call _publish() for every parsed tick;
    this base class owns the latest-tick cache and subscriber fan-out.

    Usage:
        feed = SocketIOPriceFeed(url, cache)
        await feed.connect()
        sub = feed.subscribe(lambda t: print(f"{t.symbol}: {t.price}"))
        feed.current_price("EUR/USD")
        sub.cancel()
        await feed.disconnect()
    """

    def __init__(self, cache: TickCache):
        self.cache = cache
        self._subscriptions: List[Subscription] = []
        self.stats: Dict[str, Any] = {
            "ticks_received": 0,
            "ticks_rejected": 0,
            "callback_errors": 0,
            "last_tick_time": None,
        }

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the price source."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the price source."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if currently connected."""
        pass

    def subscribe(self, on_tick: TickCallback) -> Subscription:
        """
        Register callback for every new tick.

        Args:
            on_tick: Function or coroutine function taking a Tick

        Returns:
            Subscription handle
        """
        subscription = Subscription(self, on_tick)
        self._subscriptions.append(subscription)
        return subscription

    def _remove_subscription(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def current_price(self, symbol: str) -> Optional[Tick]:
        """
        Latest tick for symbol, or None when absent or stale.

        Args:
            symbol: Normalized symbol

        Returns:
            Fresh Tick or None
        """
        return self.cache.get_fresh(symbol)

    async def _publish(self, tick: Tick) -> None:
        """Store tick and emit it to all subscribers."""
        self.cache.put(tick)
        self.stats["ticks_received"] += 1
        self.stats["last_tick_time"] = tick.observed_at

        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            try:
                result = subscription.callback(tick)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.stats["callback_errors"] += 1
                logger.error(f"Error in tick callback for {tick.symbol}: {e}")


class InMemoryPriceFeed(PriceFeed):
    """
    Feed driven by push_tick(); used for demos, paper runs and tests.

    Usage:
        feed = InMemoryPriceFeed(TickCache(30))
        await feed.push_tick(Tick("EUR/USD", Decimal("1.1")))
    """

    def __init__(self, cache: TickCache):
        super().__init__(cache)
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def push_tick(self, tick: Tick) -> None:
        await self._publish(tick)
