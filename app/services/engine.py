"""
Position Engine

Wires the price feed, instrument registry, trade lifecycle client and risk
trigger evaluator into one object with a start/stop lifecycle. The REST
layer talks only to this facade.

Author: FX Engine Team
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.domain.models.position import OpenTradeRequest, Position
from app.domain.models.valuation import PortfolioSnapshot, ValuationResult
from app.domain.services.valuation import valuate
from app.integrations.backend.trade_api import TradeApiClient
from app.integrations.market_data.base import PriceFeed, Subscription, TickCallback
from app.integrations.market_data.socketio_feed import SocketIOPriceFeed
from app.integrations.market_data.tick_cache import TickCache
from app.services.instrument_registry import InstrumentRegistry
from app.services.risk_trigger import RiskTriggerEvaluator
from app.services.trade_lifecycle import TradeLifecycleClient
from app.shared.exceptions import (
    AppException,
    FeedUnavailableError,
    NotFoundError,
)
from app.utils.logger import get_logger

logger = get_logger(__name__)


class PositionEngine:
    """
    Position Engine facade.

    Usage:
        engine = PositionEngine.from_settings(settings)
        await engine.start()

        snapshot = engine.valuate_all()
        position = await engine.open(OpenTradeRequest(symbol="EUR/USD", side="buy", lot_size=1))
        await engine.close(position.id)

        await engine.stop()
    """

    def __init__(
        self,
        feed: PriceFeed,
        registry: InstrumentRegistry,
        api: TradeApiClient,
        account_id: str = "me",
        poll_interval: float = 10.0,
        reconcile_interval: float = 60.0,
    ):
        self.feed = feed
        self.registry = registry
        self.api = api
        self.lifecycle = TradeLifecycleClient(api, feed, registry, account_id)
        self.evaluator = RiskTriggerEvaluator(
            self.lifecycle,
            feed,
            registry,
            poll_interval=poll_interval,
            reconcile_interval=reconcile_interval,
        )
        self.is_running = False

    @classmethod
    def from_settings(cls, settings: Any) -> "PositionEngine":
        """Build the production engine (socket.io feed, httpx backend)."""
        cache = TickCache(settings.STALENESS_SECONDS)
        feed = SocketIOPriceFeed(
            settings.FEED_URL,
            cache,
            token=settings.FEED_TOKEN,
            event=settings.FEED_EVENT,
            reconnect_delay=settings.FEED_RECONNECT_DELAY,
            reconnect_delay_max=settings.FEED_RECONNECT_DELAY_MAX,
        )
        api = TradeApiClient(
            settings.BACKEND_URL,
            token=settings.BACKEND_TOKEN,
            timeout=settings.BACKEND_TIMEOUT_SECONDS,
        )
        return cls(
            feed=feed,
            registry=InstrumentRegistry.from_settings(settings),
            api=api,
            account_id=settings.ACCOUNT_ID,
            poll_interval=settings.POLL_INTERVAL_SECONDS,
            reconcile_interval=settings.RECONCILE_INTERVAL_SECONDS,
        )

    # ==================== LIFECYCLE ====================

    async def start(self) -> None:
        """
        Connect the feed and start the evaluator.

        A feed that fails to connect is logged, not fatal: it keeps retrying
        in the background and valuations report the feed as unavailable
        until a connection succeeds.
        """
        if self.is_running:
            return

        try:
            await self.feed.connect()
        except Exception as e:
            logger.error(f"Price feed unavailable at startup: {e}")

        try:
            await self.lifecycle.list_open()
        except AppException as e:
            logger.warning(f"Initial position sync failed, will retry on reconcile: {e.message}")

        await self.evaluator.start()
        self.is_running = True
        logger.info("Position engine started")

    async def stop(self) -> None:
        if not self.is_running:
            return

        self.is_running = False
        await self.evaluator.stop()
        try:
            await self.feed.disconnect()
        finally:
            await self.api.close()
        logger.info("Position engine stopped")

    # ==================== PRICES ====================

    def subscribe(self, on_tick: TickCallback) -> Subscription:
        return self.feed.subscribe(on_tick)

    # ==================== VALUATION ====================

    def _position(self, position_id: str) -> Position:
        position = self.lifecycle.get_cached(position_id)
        if position is None:
            raise NotFoundError(f"Position {position_id} not found")
        return position

    def valuate_position(self, position: Position) -> ValuationResult:
        """
        Value a position against the latest fresh tick.

        Raises:
            FeedUnavailableError: Open position without a fresh tick
        """
        instrument = self.registry.get(position.symbol)
        tick = None if position.is_closed() else self.feed.current_price(position.symbol)
        return valuate(
            position,
            tick,
            instrument,
            degraded=self.registry.is_degraded(position.symbol),
        )

    def valuate(self, position_id: str) -> ValuationResult:
        return self.valuate_position(self._position(position_id))

    def valuate_all(self) -> PortfolioSnapshot:
        """Value every cached open position; those without a price are listed as unavailable."""
        valuations: List[ValuationResult] = []
        unavailable: List[str] = []

        for position in self.lifecycle.cached_open():
            try:
                valuations.append(self.valuate_position(position))
            except FeedUnavailableError:
                unavailable.append(position.id)

        return PortfolioSnapshot(valuations=valuations, unavailable=unavailable)

    # ==================== TRADES ====================

    async def list_open(self) -> List[Position]:
        return await self.lifecycle.list_open()

    def cached_open(self) -> List[Position]:
        return self.lifecycle.cached_open()

    async def open(self, request: OpenTradeRequest) -> Position:
        return await self.lifecycle.open(request)

    async def close(
        self,
        position_id: str,
        exit_price: Optional[Decimal] = None,
        reason: str = "manual",
    ) -> Position:
        """
        Close a position, by default at the current fresh tick.

        Goes through the evaluator so it never races an automatic close.

        Args:
            position_id: Position ID
            exit_price: Explicit exit price (defaults to the fresh tick)
            reason: Close reason sent to the backend

        Raises:
            NotFoundError: Unknown position
            AlreadyClosedError: Position already closed
            FeedUnavailableError: No exit price given and no fresh tick
        """
        return await self.evaluator.close_manually(position_id, exit_price, reason=reason)

    async def update_thresholds(
        self,
        position_id: str,
        stop_loss: Decimal,
        take_profit: Decimal,
    ) -> Position:
        return await self.lifecycle.update_thresholds(position_id, stop_loss, take_profit)

    # ==================== STATUS ====================

    def status(self) -> Dict[str, Any]:
        """Health summary for the /health endpoint."""
        last_tick = self.feed.stats.get("last_tick_time")
        return {
            "running": self.is_running,
            "feed": {
                "connected": self.feed.is_connected,
                "ticks_received": self.feed.stats["ticks_received"],
                "ticks_rejected": self.feed.stats["ticks_rejected"],
                "last_tick_time": last_tick.isoformat() if last_tick else None,
            },
            "evaluator": {
                "running": self.evaluator.is_running,
                **self.evaluator.stats,
            },
            "positions": {
                "open": len(self.lifecycle.cached_open()),
                "last_sync_time": (
                    self.lifecycle.last_sync_time.isoformat()
                    if self.lifecycle.last_sync_time else None
                ),
            },
            "degraded_symbols": sorted(self.registry.degraded_symbols),
        }
