"""
Risk Trigger Evaluator

Watches open positions and closes those whose stop loss or take profit has
been crossed. Runs off two event sources that share one serialized
evaluation path per position:
- every new tick for the position's symbol (push)
- a fixed polling interval (pull), which also reconciles the position cache

Author: FX Engine Team
"""

import asyncio
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from app.domain.models.position import Position, PositionSide
from app.domain.models.tick import Tick
from app.domain.services.valuation import pnl_at_price
from app.integrations.market_data.base import PriceFeed, Subscription
from app.services.instrument_registry import InstrumentRegistry
from app.services.trade_lifecycle import TradeLifecycleClient
from app.shared.exceptions import (
    AlreadyClosedError,
    AppException,
    FeedUnavailableError,
    NotFoundError,
)
from app.utils.logger import get_logger

logger = get_logger(__name__)


class TriggerKind(str, Enum):
    """Which threshold fired"""
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"


class TriggerState(str, Enum):
    """Per-position trigger lifecycle; CLOSED is terminal"""
    OPEN = "open"
    STOP_LOSS_HIT = "stop_loss_hit"
    TAKE_PROFIT_HIT = "take_profit_hit"
    CLOSING = "closing"
    CLOSED = "closed"


_HIT_STATE = {
    TriggerKind.STOP_LOSS: TriggerState.STOP_LOSS_HIT,
    TriggerKind.TAKE_PROFIT: TriggerState.TAKE_PROFIT_HIT,
}

_BUSY_STATES = (TriggerState.CLOSING, TriggerState.CLOSED)


@dataclass(frozen=True)
class TriggerOutcome:
    """Result of one fired trigger"""
    position_id: str
    kind: TriggerKind
    price: Decimal
    pnl: Decimal
    closed: bool
    error: Optional[str] = None


def detect_trigger(position: Position, price: Decimal) -> Optional[TriggerKind]:
    """
    Decide whether `price` crosses the position's SL or TP.

    Long: SL when price <= stop_loss, TP when price >= take_profit.
    Short: SL when price >= stop_loss, TP when price <= take_profit.
    A threshold of 0 is disabled. When both fire, stop loss wins.

    Args:
        position: Open position snapshot
        price: Price to test

    Returns:
        TriggerKind or None
    """
    long = position.side == PositionSide.LONG

    if position.stop_loss_enabled:
        if (price <= position.stop_loss) if long else (price >= position.stop_loss):
            return TriggerKind.STOP_LOSS

    if position.take_profit_enabled:
        if (price >= position.take_profit) if long else (price <= position.take_profit):
            return TriggerKind.TAKE_PROFIT

    return None


class RiskTriggerEvaluator:
    """
    Risk Trigger Evaluator

    A position is evaluated by at most one task at a time. While a close is
    in flight the position sits in CLOSING and further ticks or polls skip
    it, so one breach produces one close command. A failed close returns the
    position to OPEN and the next tick or poll retries it. Manual closes take
    the same lock, so at most one close command per position is in flight.

    Positions whose symbol has no fresh tick are skipped, never closed.

    Usage:
        evaluator = RiskTriggerEvaluator(lifecycle, feed, registry, poll_interval=10)
        await evaluator.start()
        ...
        await evaluator.stop()
    """

    def __init__(
        self,
        lifecycle: TradeLifecycleClient,
        feed: PriceFeed,
        registry: InstrumentRegistry,
        poll_interval: float = 10.0,
        reconcile_interval: float = 60.0,
        monotonic: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize evaluator.

        Args:
            lifecycle: Trade lifecycle client (positions + close)
            feed: Price feed (ticks + fresh prices)
            registry: Instrument economics for close PnL
            poll_interval: Seconds between polling passes
            reconcile_interval: Seconds between cache re-syncs
            monotonic: Monotonic clock (injectable for tests)
        """
        self.lifecycle = lifecycle
        self.feed = feed
        self.registry = registry
        self.poll_interval = poll_interval
        self.reconcile_interval = reconcile_interval
        self._monotonic = monotonic or time.monotonic

        self._states: Dict[str, TriggerState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._subscription: Optional[Subscription] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._last_reconcile: Optional[float] = None
        self.is_running = False

        self.stats = {
            "evaluations": 0,
            "skipped_no_price": 0,
            "triggers_fired": 0,
            "closes_confirmed": 0,
            "close_failures": 0,
            "manual_closes": 0,
            "reconcile_failures": 0,
        }

    # ==================== LIFECYCLE ====================

    async def start(self) -> None:
        """Subscribe to ticks and start the polling loop."""
        if self.is_running:
            logger.warning("Risk trigger evaluator already running")
            return

        self.is_running = True
        self._subscription = self.feed.subscribe(self.on_tick)
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(
            f"Risk trigger evaluator started (poll={self.poll_interval}s, "
            f"reconcile={self.reconcile_interval}s)"
        )

    async def stop(self) -> None:
        """Stop polling, detach from the feed and wait for in-flight closes."""
        if not self.is_running:
            return

        self.is_running = False

        if self._subscription:
            self._subscription.cancel()
            self._subscription = None

        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        await self.drain()
        logger.info("Risk trigger evaluator stopped")

    async def drain(self) -> None:
        """Wait for tick-scheduled evaluations in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ==================== STATE ====================

    def state_of(self, position_id: str) -> TriggerState:
        return self._states.get(position_id, TriggerState.OPEN)

    def _prune(self) -> None:
        """Forget state for positions no longer in the cache."""
        live = {p.id for p in self.lifecycle.cached_open()}
        for position_id in list(self._states):
            if position_id not in live and not self._is_locked(position_id):
                self._states.pop(position_id, None)
                self._locks.pop(position_id, None)

    def _is_locked(self, position_id: str) -> bool:
        lock = self._locks.get(position_id)
        return lock is not None and lock.locked()

    # ==================== EVENT SOURCES ====================

    def on_tick(self, tick: Tick) -> None:
        """
        Schedule evaluation of positions on the tick's symbol.

        Returns immediately; tick delivery never waits on a close call.
        """
        for position in self.lifecycle.cached_open():
            if position.symbol != tick.symbol:
                continue
            if self.state_of(position.id) in _BUSY_STATES or self._is_locked(position.id):
                continue
            task = asyncio.create_task(self.evaluate_position(position.id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _poll_loop(self) -> None:
        while self.is_running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in risk trigger poll cycle: {e}", exc_info=True)
            await asyncio.sleep(self.poll_interval)

    async def run_cycle(self) -> List[TriggerOutcome]:
        """
        One polling pass: reconcile the cache when due, then evaluate all.

        Returns:
            Outcomes of triggers fired this pass
        """
        now = self._monotonic()
        if self._last_reconcile is None or now - self._last_reconcile >= self.reconcile_interval:
            try:
                await self.lifecycle.list_open()
                self._last_reconcile = now
                self._prune()
            except AppException as e:
                self.stats["reconcile_failures"] += 1
                logger.warning(f"Position reconcile failed, evaluating cached positions: {e.message}")

        return await self.evaluate_all()

    async def evaluate_all(self) -> List[TriggerOutcome]:
        """Evaluate every cached open position concurrently."""
        positions = self.lifecycle.cached_open()
        results = await asyncio.gather(*(self.evaluate_position(p.id) for p in positions))
        return [r for r in results if r is not None]

    # ==================== EVALUATION ====================

    async def evaluate_position(self, position_id: str) -> Optional[TriggerOutcome]:
        """
        Evaluate one position against its latest fresh tick.

        Args:
            position_id: Position ID

        Returns:
            TriggerOutcome when a threshold fired, None otherwise
            (no trigger, no fresh price, or already being closed)
        """
        if self.state_of(position_id) in _BUSY_STATES:
            return None

        lock = self._locks.setdefault(position_id, asyncio.Lock())
        if lock.locked():
            return None

        async with lock:
            if self.state_of(position_id) in _BUSY_STATES:
                return None

            position = self.lifecycle.get_cached(position_id)
            if position is None:
                return None
            if position.is_closed():
                self._states[position_id] = TriggerState.CLOSED
                return None

            self.stats["evaluations"] += 1

            tick = self.feed.current_price(position.symbol)
            if tick is None:
                self.stats["skipped_no_price"] += 1
                logger.debug(f"No fresh price for {position.symbol}; skipping {position_id}")
                return None

            kind = detect_trigger(position, tick.price)
            if kind is None:
                self._states[position_id] = TriggerState.OPEN
                return None

            return await self._fire(position, tick, kind)

    async def _fire(self, position: Position, tick: Tick, kind: TriggerKind) -> TriggerOutcome:
        """Close a position whose threshold fired. Caller holds the position lock."""
        self._states[position.id] = _HIT_STATE[kind]
        self.stats["triggers_fired"] += 1

        instrument = self.registry.get(position.symbol)
        pnl = pnl_at_price(position, tick.price, instrument)

        threshold = position.stop_loss if kind == TriggerKind.STOP_LOSS else position.take_profit
        logger.info(
            f"{kind.value} hit for {position.id} ({position.side.value} {position.symbol}): "
            f"price {tick.price} vs {threshold}, closing with PnL {pnl}"
        )

        self._states[position.id] = TriggerState.CLOSING
        try:
            await self.lifecycle.close(position.id, tick.price, pnl, reason=kind.value)
        except AlreadyClosedError:
            logger.info(f"Position {position.id} was already closed on backend")
        except NotFoundError:
            logger.warning(f"Position {position.id} vanished from backend; dropping")
        except asyncio.CancelledError:
            self._states[position.id] = TriggerState.OPEN
            raise
        except Exception as e:
            self._states[position.id] = TriggerState.OPEN
            self.stats["close_failures"] += 1
            message = e.message if isinstance(e, AppException) else str(e)
            logger.warning(f"Auto-close of {position.id} failed, will retry: {message}")
            return TriggerOutcome(position.id, kind, tick.price, pnl, closed=False, error=message)

        self._states[position.id] = TriggerState.CLOSED
        self.stats["closes_confirmed"] += 1
        return TriggerOutcome(position.id, kind, tick.price, pnl, closed=True)

    async def close_manually(
        self,
        position_id: str,
        exit_price: Optional[Decimal] = None,
        reason: str = "manual",
    ) -> Position:
        """
        Close a position on request, serialized with automatic closes.

        Waits for an in-flight evaluation of the same position; if that
        closed it, the manual close fails as already closed.

        Args:
            position_id: Position ID
            exit_price: Explicit exit price (defaults to the fresh tick)
            reason: Close reason sent to the backend

        Raises:
            NotFoundError: Unknown position
            AlreadyClosedError: Position already closed
            FeedUnavailableError: No exit price given and no fresh tick
        """
        lock = self._locks.setdefault(position_id, asyncio.Lock())
        async with lock:
            position = self.lifecycle.get_cached(position_id)
            if position is None:
                await self.lifecycle.list_open()
                position = self.lifecycle.get_cached(position_id)
            if position is None:
                raise NotFoundError(f"Position {position_id} not found")

            if position.is_closed() or self.state_of(position_id) == TriggerState.CLOSED:
                raise AlreadyClosedError(f"Position {position_id} already closed", position_id=position_id)

            if exit_price is None:
                tick = self.feed.current_price(position.symbol)
                if tick is None:
                    raise FeedUnavailableError(
                        f"No fresh price for {position.symbol}", symbol=position.symbol
                    )
                exit_price = tick.price

            pnl = pnl_at_price(position, exit_price, self.registry.get(position.symbol))

            self._states[position_id] = TriggerState.CLOSING
            try:
                closed = await self.lifecycle.close(position_id, exit_price, pnl, reason=reason)
            except (AlreadyClosedError, NotFoundError):
                self._states[position_id] = TriggerState.CLOSED
                raise
            except BaseException:
                self._states[position_id] = TriggerState.OPEN
                raise

            self._states[position_id] = TriggerState.CLOSED
            self.stats["manual_closes"] += 1
            return closed
