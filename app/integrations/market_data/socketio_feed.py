"""
Socket.IO Price Feed

Real-time prices pushed by the trade backend over socket.io.

Event `receive_price` carries either one quote:
    {"symbol": "EUR/USD", "price": "1.10050"}
or every instrument multiplexed in one message:
    {"EUR/USD": {"price": "1.10050"}, "XAU/USD": {"price": "2315.20"}}

Author: FX Engine Team
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Callable, List, Optional

import socketio
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from app.domain.models.tick import Tick
from app.integrations.market_data.base import PriceFeed
from app.integrations.market_data.tick_cache import TickCache
from app.services.instrument_registry import normalize_symbol
from app.utils.logger import get_logger
from app.utils.validators import to_decimal

logger = get_logger(__name__)


def _parse_quote(symbol: Any, price: Any, observed_at: datetime, normalize: Callable[[str], str]) -> Tick:
    if not isinstance(symbol, str) or not symbol.strip():
        raise ValueError("missing symbol")
    value = to_decimal(price, "price")
    if value <= 0:
        raise ValueError(f"non-positive price {price!r}")
    return Tick(symbol=normalize(symbol), price=value, observed_at=observed_at)


def parse_price_payload(
    data: Any,
    observed_at: datetime,
    normalize: Callable[[str], str] = normalize_symbol,
) -> tuple[List[Tick], int]:
    """
    Parse a receive_price payload into ticks.

    Args:
        data: Decoded event payload (dict or JSON string)
        observed_at: Arrival time stamped on every tick
        normalize: Symbol normalizer

    Returns:
        (ticks, rejected_count) - malformed entries are counted, not raised
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON price payload: {str(data)[:100]}")
            return [], 1

    if not isinstance(data, dict):
        logger.warning(f"Unexpected price payload type: {type(data).__name__}")
        return [], 1

    # Single quote
    if "symbol" in data and "price" in data:
        try:
            return [_parse_quote(data["symbol"], data["price"], observed_at, normalize)], 0
        except ValueError as e:
            logger.warning(f"Rejected quote {data!r}: {e}")
            return [], 1

    # Multiplexed quotes
    ticks: List[Tick] = []
    rejected = 0
    for symbol, quote in data.items():
        price = quote.get("price") if isinstance(quote, dict) else quote
        try:
            ticks.append(_parse_quote(symbol, price, observed_at, normalize))
        except ValueError as e:
            rejected += 1
            logger.warning(f"Rejected quote for {symbol}: {e}")
    return ticks, rejected


class SocketIOPriceFeed(PriceFeed):
    """
    Socket.IO client for the backend price channel.

    Reconnects with exponential backoff after a dropped connection, and keeps
    retrying in the background when the first connect fails. While
    disconnected the cache keeps the last ticks, but current_price() stops
    serving them once they pass the staleness bound.

    Usage:
        feed = SocketIOPriceFeed("http://localhost:3000", TickCache(30), token="jwt")
        await feed.connect()
        feed.subscribe(on_tick)
        ...
        await feed.disconnect()
    """

    def __init__(
        self,
        url: str,
        cache: TickCache,
        token: Optional[str] = None,
        event: str = "receive_price",
        reconnect_delay: float = 1.0,
        reconnect_delay_max: float = 60.0,
        client: Optional[socketio.AsyncClient] = None,
    ):
        """
        Initialize feed.

        Args:
            url: Socket.IO server URL
            cache: Latest-tick cache
            token: Auth token sent in the connect handshake
            event: Price event name
            reconnect_delay: Initial reconnection delay in seconds
            reconnect_delay_max: Max reconnection delay in seconds
            client: Pre-built AsyncClient (tests)
        """
        super().__init__(cache)
        self.url = url
        self.token = token
        self.event = event
        self._sio = client or socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=0,  # retry forever
            reconnection_delay=reconnect_delay,
            reconnection_delay_max=reconnect_delay_max,
            logger=False,
            engineio_logger=False,
        )
        self.reconnect_delay = reconnect_delay
        self.reconnect_delay_max = reconnect_delay_max
        self._should_run = False
        self._reconnect_task: Optional[asyncio.Task] = None
        self.connect_attempts = 0
        self.last_disconnect_time: Optional[datetime] = None

        self._sio.on("connect", self._on_connect)
        self._sio.on("disconnect", self._on_disconnect)
        self._sio.on("connect_error", self._on_connect_error)
        self._sio.on(self.event, self._on_price)

    async def connect(self) -> None:
        """
        Establish Socket.IO connection.

        On failure the error is raised and a background task keeps retrying
        with exponential backoff until connected or disconnect() is called.
        """
        if self.is_connected:
            return

        self._should_run = True

        try:
            logger.info(f"Connecting to price feed: {self.url}")
            await self._attempt()
        except SocketIOConnectionError as e:
            logger.error(f"Failed to connect to price feed: {e}")
            self._schedule_reconnect()
            raise

    async def _attempt(self) -> None:
        self.connect_attempts += 1
        auth = {"token": self.token} if self.token else None
        await self._sio.connect(self.url, auth=auth, wait_timeout=10)

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        """Retry the initial connection with exponential backoff."""
        delay = self.reconnect_delay
        while self._should_run and not self.is_connected:
            logger.info(f"Reconnecting to price feed in {delay} seconds...")
            await asyncio.sleep(delay)
            if not self._should_run:
                break

            try:
                await self._attempt()
            except SocketIOConnectionError as e:
                logger.warning(f"Price feed reconnection failed: {e}")
                delay = min(delay * 2, self.reconnect_delay_max)
            else:
                logger.info(f"Price feed reconnected after {self.connect_attempts} attempts")
                break

    async def disconnect(self) -> None:
        """Close Socket.IO connection and stop reconnecting."""
        self._should_run = False

        if self._reconnect_task:
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
            self._reconnect_task = None

        await self._sio.disconnect()
        logger.info("Disconnected from price feed")

    @property
    def is_connected(self) -> bool:
        return bool(self._sio.connected)

    async def _on_connect(self) -> None:
        logger.info("Connected to price feed")

    async def _on_disconnect(self, reason: Any = None) -> None:
        self.last_disconnect_time = self.cache.now()
        if self._should_run:
            logger.warning(
                f"Price feed connection lost ({reason or 'unknown reason'}); "
                f"reconnecting, ticks older than {self.cache.staleness_seconds}s will be withheld"
            )

    async def _on_connect_error(self, data: Any = None) -> None:
        logger.warning(f"Price feed connect error: {data}")

    async def _on_price(self, data: Any) -> None:
        ticks, rejected = parse_price_payload(data, self.cache.now())
        self.stats["ticks_rejected"] += rejected
        for tick in ticks:
            await self._publish(tick)
