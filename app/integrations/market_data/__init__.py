"""
Market Data Integrations

Push-based price feeds feeding the latest-tick cache:
- Socket.IO backend price channel
- In-memory feed for paper runs and tests
"""

from app.integrations.market_data.base import PriceFeed, InMemoryPriceFeed, Subscription
from app.integrations.market_data.tick_cache import TickCache
from app.integrations.market_data.socketio_feed import SocketIOPriceFeed, parse_price_payload

__all__ = [
    "PriceFeed",
    "InMemoryPriceFeed",
    "Subscription",
    "TickCache",
    "SocketIOPriceFeed",
    "parse_price_payload",
]
