"""
Socket.IO Price Feed Tests

Tests for price payload parsing and the socket.io event handlers.
The socket.io client is mocked - no real connections.

Author: FX Engine Team
"""

import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from app.integrations.market_data.socketio_feed import SocketIOPriceFeed, parse_price_payload

NOW = datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)


# ==================== PARSER TESTS ====================

def test_parse_single_quote():
    """Test {symbol, price} payload"""
    ticks, rejected = parse_price_payload({"symbol": "FX:EURUSD", "price": "1.10050"}, NOW)

    assert rejected == 0
    assert len(ticks) == 1
    assert ticks[0].symbol == "EUR/USD"
    assert ticks[0].price == Decimal("1.10050")
    assert ticks[0].observed_at == NOW


def test_parse_multiplexed_quotes():
    """Test one message carrying several instruments"""
    payload = {
        "EUR/USD": {"price": 1.1005},
        "TVC:GOLD": {"price": "2315.20"},
        "USDCHF": "0.91234",
    }

    ticks, rejected = parse_price_payload(payload, NOW)

    prices = {t.symbol: t.price for t in ticks}
    assert rejected == 0
    assert prices == {
        "EUR/USD": Decimal("1.1005"),
        "XAU/USD": Decimal("2315.20"),
        "USD/CHF": Decimal("0.91234"),
    }


def test_parse_json_string():
    """Test payload delivered as a JSON string"""
    ticks, rejected = parse_price_payload(json.dumps({"EUR/USD": {"price": "1.1"}}), NOW)

    assert rejected == 0
    assert ticks[0].symbol == "EUR/USD"


@pytest.mark.parametrize("payload", [
    {"symbol": "EUR/USD", "price": "0"},
    {"symbol": "EUR/USD", "price": "-1.1"},
    {"symbol": "EUR/USD", "price": "abc"},
    {"symbol": "EUR/USD", "price": None},
    {"symbol": "", "price": "1.1"},
    "not json",
    ["EUR/USD", 1.1],
])
def test_parse_rejects_malformed(payload):
    """Test malformed payloads are counted, not raised"""
    ticks, rejected = parse_price_payload(payload, NOW)

    assert ticks == []
    assert rejected == 1


def test_parse_keeps_good_entries_of_mixed_payload():
    """Test bad entries do not discard good ones"""
    ticks, rejected = parse_price_payload({"EUR/USD": {"price": "1.1"}, "USD/CHF": {"price": "NaN"}}, NOW)

    assert [t.symbol for t in ticks] == ["EUR/USD"]
    assert rejected == 1


# ==================== CLIENT TESTS ====================

@pytest.fixture
def sio_client():
    """Mock socketio.AsyncClient"""
    client = Mock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.connected = False
    return client


@pytest.fixture
def sio_feed(sio_client, tick_cache):
    """Create SocketIOPriceFeed over the mock client"""
    return SocketIOPriceFeed("http://feed.test", tick_cache, token="jwt", client=sio_client)


def test_handlers_registered(sio_feed, sio_client):
    """Test connect/disconnect/price handlers are wired"""
    events = [c.args[0] for c in sio_client.on.call_args_list]

    assert events == ["connect", "disconnect", "connect_error", "receive_price"]


@pytest.mark.asyncio
async def test_connect_sends_token(sio_feed, sio_client):
    """Test handshake carries the auth token"""
    await sio_feed.connect()

    sio_client.connect.assert_awaited_once_with("http://feed.test", auth={"token": "jwt"}, wait_timeout=10)


@pytest.mark.asyncio
async def test_connect_failure_propagates(sio_feed, sio_client):
    """Test connection errors are raised to the caller"""
    sio_client.connect.side_effect = SocketIOConnectionError("refused")

    with pytest.raises(SocketIOConnectionError):
        await sio_feed.connect()

    await sio_feed.disconnect()


@pytest.mark.asyncio
async def test_connect_skipped_when_connected(sio_feed, sio_client):
    """Test connect is a no-op on a live connection"""
    sio_client.connected = True

    await sio_feed.connect()

    sio_client.connect.assert_not_awaited()
    assert sio_feed.is_connected


@pytest.mark.asyncio
async def test_price_event_publishes(sio_feed, clock):
    """Test price event fills the cache and notifies subscribers"""
    received = []
    sio_feed.subscribe(received.append)

    await sio_feed._on_price({"EUR/USD": {"price": "1.1"}, "USD/CHF": {"price": "-1"}})

    assert [t.symbol for t in received] == ["EUR/USD"]
    assert sio_feed.current_price("EUR/USD").observed_at == clock()
    assert sio_feed.stats["ticks_received"] == 1
    assert sio_feed.stats["ticks_rejected"] == 1


@pytest.mark.asyncio
async def test_disconnect_recorded(sio_feed, sio_client, clock):
    """Test dropped connection is timestamped and disconnect stops the client"""
    await sio_feed.connect()
    await sio_feed._on_disconnect("transport close")

    assert sio_feed.last_disconnect_time == clock()

    await sio_feed.disconnect()
    sio_client.disconnect.assert_awaited_once()


# ==================== RECONNECT TESTS ====================

@pytest.mark.asyncio
async def test_failed_connect_retries_in_background(sio_client, tick_cache):
    """Test a feed that is down at startup keeps retrying until it connects"""
    sio_client.connect.side_effect = [
        SocketIOConnectionError("refused"),
        SocketIOConnectionError("refused"),
        None,
    ]
    feed = SocketIOPriceFeed("http://feed.test", tick_cache, client=sio_client, reconnect_delay=0.01)

    with pytest.raises(SocketIOConnectionError):
        await feed.connect()

    await asyncio.wait_for(feed._reconnect_task, timeout=1)

    assert sio_client.connect.await_count == 3
    assert feed.connect_attempts == 3


@pytest.mark.asyncio
async def test_disconnect_stops_retrying(sio_client, tick_cache):
    """Test disconnect cancels the background reconnect loop"""
    sio_client.connect.side_effect = SocketIOConnectionError("refused")
    feed = SocketIOPriceFeed(
        "http://feed.test",
        tick_cache,
        client=sio_client,
        reconnect_delay=0.01,
        reconnect_delay_max=0.01,
    )

    with pytest.raises(SocketIOConnectionError):
        await feed.connect()
    await asyncio.sleep(0.05)
    await feed.disconnect()

    attempts = sio_client.connect.await_count
    await asyncio.sleep(0.05)

    assert attempts > 1
    assert sio_client.connect.await_count == attempts
    assert feed._reconnect_task is None
