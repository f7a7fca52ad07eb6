"""
Trade Lifecycle Client

Boundary to the backend trade store: open, list, close and threshold
updates, with client-side guards and an eventually consistent local cache.

Author: FX Engine Team
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from app.domain.models.position import (
    OpenTradeRequest,
    Position,
    PositionSide,
    PositionStatus,
)
from app.integrations.backend.trade_api import TradeApiClient
from app.integrations.market_data.base import PriceFeed
from app.services.instrument_registry import InstrumentRegistry
from app.shared.exceptions import (
    AlreadyClosedError,
    BackendUnreachableError,
    FeedUnavailableError,
    InsufficientBalanceError,
    InvalidThresholdError,
    NotFoundError,
    ValidationError,
)
from app.utils.logger import get_logger

logger = get_logger(__name__)


def validate_thresholds(
    side: PositionSide,
    price: Decimal,
    stop_loss: Decimal,
    take_profit: Decimal,
) -> None:
    """
    Check SL/TP lie on the correct side of `price`.

    Long: stop_loss < price < take_profit. Short: take_profit < price < stop_loss.
    A threshold of 0 is disabled and always passes.

    Raises:
        InvalidThresholdError: A threshold is on the wrong side
    """
    if stop_loss:
        if side == PositionSide.LONG and stop_loss >= price:
            raise InvalidThresholdError(
                f"Stop loss {stop_loss} must be below current price {price} for a long position"
            )
        if side == PositionSide.SHORT and stop_loss <= price:
            raise InvalidThresholdError(
                f"Stop loss {stop_loss} must be above current price {price} for a short position"
            )

    if take_profit:
        if side == PositionSide.LONG and take_profit <= price:
            raise InvalidThresholdError(
                f"Take profit {take_profit} must be above current price {price} for a long position"
            )
        if side == PositionSide.SHORT and take_profit >= price:
            raise InvalidThresholdError(
                f"Take profit {take_profit} must be below current price {price} for a short position"
            )


class TradeLifecycleClient:
    """
    Trade Lifecycle Client

    The only component that mutates positions. It never edits a snapshot in
    place: every change replaces the cached Position with a new instance.
    The backend stays the system of record; its response decides success.

    Usage:
        client = TradeLifecycleClient(api, feed, registry, account_id="me")

        positions = await client.list_open()
        position = await client.open(OpenTradeRequest(symbol="EUR/USD", side="buy", lot_size=1))
        closed = await client.close(position.id, exit_price, pnl)
    """

    def __init__(
        self,
        api: TradeApiClient,
        feed: PriceFeed,
        registry: InstrumentRegistry,
        account_id: str,
    ):
        """
        Initialize lifecycle client.

        Args:
            api: Backend trade API
            feed: Price feed for current-price guards
            registry: Instrument economics for notional checks
            account_id: User whose balance guards new trades
        """
        self.api = api
        self.feed = feed
        self.registry = registry
        self.account_id = account_id
        self._positions: Dict[str, Position] = {}
        # Monotonic counter of local cache writes; last write per position id
        self._version = 0
        self._mutated: Dict[str, int] = {}
        self._syncs_in_flight = 0
        self.last_sync_time: Optional[datetime] = None

    # ==================== CACHE ====================

    def _normalized(self, position: Position) -> Position:
        symbol = self.registry.normalize(position.symbol)
        if symbol != position.symbol:
            position = position.model_copy(update={"symbol": symbol})
        return position

    def _touch(self, position_id: str) -> None:
        self._version += 1
        self._mutated[position_id] = self._version

    def _ingest(self, position: Position) -> Position:
        """Normalize and cache a backend snapshot."""
        position = self._normalized(position)
        self._touch(position.id)
        self._positions[position.id] = position
        return position

    def _drop(self, position_id: str) -> None:
        self._touch(position_id)
        if self._positions.pop(position_id, None) is not None:
            logger.info(f"Dropped position {position_id} from local cache")

    def get_cached(self, position_id: str) -> Optional[Position]:
        return self._positions.get(position_id)

    def cached_open(self) -> List[Position]:
        """Snapshot of cached open positions."""
        return [p for p in self._positions.values() if p.is_open()]

    def _require_fresh_price(self, symbol: str) -> Decimal:
        tick = self.feed.current_price(symbol)
        if tick is None:
            raise FeedUnavailableError(f"No fresh price for {symbol}", symbol=symbol)
        return tick.price

    async def _find(self, position_id: str) -> Position:
        """Cached position, re-syncing once from the backend on a miss."""
        position = self._positions.get(position_id)
        if position is None:
            await self.list_open()
            position = self._positions.get(position_id)
        if position is None:
            raise NotFoundError(f"Position {position_id} not found")
        return position

    # ==================== OPERATIONS ====================

    async def list_open(self) -> List[Position]:
        """
        Fetch open positions and reconcile the cache to them.

        Entries written locally while the listing was in flight (opened,
        closed, updated or dropped) are newer than the listing and kept as
        they are. A position we already closed is never reopened by a
        lagging listing.

        Returns:
            Open positions from the backend

        Raises:
            BackendUnreachableError: Backend call failed (cache untouched)
        """
        started = self._version
        self._syncs_in_flight += 1
        try:
            positions = await self.api.list_open_trades()
        finally:
            self._syncs_in_flight -= 1

        def written_since_fetch(position_id: str) -> bool:
            return self._mutated.get(position_id, 0) > started

        fresh: Dict[str, Position] = {}
        for position in positions:
            if written_since_fetch(position.id):
                continue
            cached = self._positions.get(position.id)
            if cached is not None and cached.is_closed():
                # Close already confirmed to us; the listing lags behind it
                fresh[position.id] = cached
            else:
                fresh[position.id] = self._normalized(position)

        for position_id, position in self._positions.items():
            if written_since_fetch(position_id):
                fresh[position_id] = position

        vanished = set(self._positions) - set(fresh)
        if vanished:
            logger.info(f"Reconciled cache: {len(vanished)} position(s) no longer open on backend")

        self._positions = fresh
        if not self._syncs_in_flight:
            self._mutated = {k: v for k, v in self._mutated.items() if v > started}
        self.last_sync_time = datetime.now(timezone.utc)
        return [p for p in fresh.values() if p.is_open()]

    async def open(self, request: OpenTradeRequest) -> Position:
        """
        Open a position at the current tick.

        Args:
            request: Symbol, side, lot size and optional thresholds

        Returns:
            Position created by the backend

        Raises:
            ValidationError: lot_size <= 0, or backend rejected the request
            FeedUnavailableError: No fresh price for the symbol
            InvalidThresholdError: SL/TP on the wrong side of the price
            InsufficientBalanceError: Notional exceeds balance
            BackendUnreachableError: Backend call failed
        """
        if request.lot_size <= 0:
            raise ValidationError("lot_size must be positive")

        symbol = self.registry.normalize(request.symbol)
        price = self._require_fresh_price(symbol)

        validate_thresholds(request.side, price, request.stop_loss, request.take_profit)

        notional = self.registry.get(symbol).notional(request.lot_size)
        balance = await self.api.get_balance(self.account_id)
        if notional > balance:
            raise InsufficientBalanceError(
                f"Position notional {notional} exceeds balance {balance}"
            )

        body = {
            "symbol": symbol,
            "type": "buy" if request.side == PositionSide.LONG else "sell",
            "lotSize": str(request.lot_size),
            "amount": str(notional),
            "entryPrice": str(price),
            "price": str(price),
            "stopLoss": str(request.stop_loss),
            "takeProfit": str(request.take_profit),
        }

        position = self._ingest(await self.api.create_trade(body))
        logger.info(
            f"Opened {position.side.value} {position.lot_size} {position.symbol} "
            f"@ {position.entry_price} (id={position.id})"
        )
        return position

    async def close(
        self,
        position_id: str,
        exit_price: Decimal,
        computed_pnl: Decimal,
        reason: str = "manual",
    ) -> Position:
        """
        Close a position at `exit_price` with the engine-computed PnL.

        Args:
            position_id: Position ID
            exit_price: Price the close is based on
            computed_pnl: PnL computed at exit_price
            reason: "manual", "stop_loss" or "take_profit"

        Returns:
            Closed position

        Raises:
            AlreadyClosedError: Closed locally or on the backend
            NotFoundError: Position not on the backend (cache entry dropped)
            BackendUnreachableError: Backend call failed or did not confirm
        """
        position = await self._find(position_id)
        if position.is_closed():
            raise AlreadyClosedError(f"Position {position_id} already closed", position_id=position_id)

        try:
            confirmed = await self.api.close_trade(
                position_id,
                exit_price=exit_price,
                pnl=computed_pnl,
                lot_size=position.lot_size,
                reason=reason,
            )
        except NotFoundError:
            self._drop(position_id)
            raise
        except AlreadyClosedError:
            self._drop(position_id)
            raise

        if confirmed is None:
            closed = position.model_copy(update={
                "status": PositionStatus.CLOSED,
                "exit_price": exit_price,
                "realized_pnl": computed_pnl,
                "closed_at": datetime.now(timezone.utc),
            })
        else:
            if not confirmed.is_closed():
                raise BackendUnreachableError(f"Backend did not confirm close of {position_id}")
            closed = confirmed.model_copy(update={
                "exit_price": confirmed.exit_price if confirmed.exit_price is not None else exit_price,
                "realized_pnl": confirmed.realized_pnl if confirmed.realized_pnl is not None else computed_pnl,
                "closed_at": confirmed.closed_at or datetime.now(timezone.utc),
            })

        closed = self._ingest(closed)
        logger.info(
            f"Closed position {position_id} ({reason}) @ {closed.exit_price}, "
            f"realized PnL {closed.realized_pnl}"
        )
        return closed

    async def update_thresholds(
        self,
        position_id: str,
        stop_loss: Decimal,
        take_profit: Decimal,
    ) -> Position:
        """
        Replace SL/TP on an open position (0 disables).

        Raises:
            NotFoundError: Unknown position
            AlreadyClosedError: Position is closed
            FeedUnavailableError: No fresh price to validate against
            InvalidThresholdError: SL/TP on the wrong side of the price
            BackendUnreachableError: Backend call failed
        """
        position = await self._find(position_id)
        if position.is_closed():
            raise AlreadyClosedError(f"Position {position_id} already closed", position_id=position_id)

        price = self._require_fresh_price(position.symbol)
        validate_thresholds(position.side, price, stop_loss, take_profit)

        try:
            updated = await self.api.update_sl_tp(position_id, stop_loss, take_profit)
        except NotFoundError:
            self._drop(position_id)
            raise

        if updated is None:
            updated = position.model_copy(update={"stop_loss": stop_loss, "take_profit": take_profit})

        logger.info(f"Updated thresholds for {position_id}: SL={stop_loss} TP={take_profit}")
        return self._ingest(updated)
