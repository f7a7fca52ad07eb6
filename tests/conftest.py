"""
Pytest configuration and shared fixtures.

Provides a controllable clock, an in-memory price feed, and an in-memory
trade backend served through httpx.MockTransport.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import patch

import httpx
import pytest

from app.domain.models.position import Position
from app.domain.models.tick import Tick
from app.integrations.backend.trade_api import TradeApiClient
from app.integrations.market_data.base import InMemoryPriceFeed
from app.integrations.market_data.tick_cache import TickCache
from app.services.instrument_registry import InstrumentRegistry
from app.services.trade_lifecycle import TradeLifecycleClient

BACKEND_URL = "http://backend.test/api"
ACCOUNT_ID = "user-1"


class FakeClock:
    """UTC clock that only moves when told to"""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


class FakeTradeBackend:
    """
    In-memory trade ledger speaking the backend's REST dialect.

    Records every request as (method, path, json_body).
    """

    def __init__(self, balance: Decimal = Decimal("100000")):
        self.trades: Dict[str, Dict[str, Any]] = {}
        self.balance = balance
        self.requests: List[Tuple[str, str, Optional[Dict[str, Any]]]] = []
        self.fail_next: List[int] = []
        self.reject_create: Optional[str] = None
        self._next_id = 1

    def add_trade(self, **fields: Any) -> Dict[str, Any]:
        trade_id = fields.pop("_id", None) or f"t{self._next_id}"
        self._next_id += 1
        doc = {
            "_id": trade_id,
            "symbol": "EUR/USD",
            "type": "buy",
            "lotSize": "10",
            "entryPrice": "1.10000",
            "stopLoss": "0",
            "takeProfit": "0",
            "status": "open",
            "createdAt": "2026-01-05T11:00:00Z",
        }
        doc.update(fields)
        self.trades[trade_id] = doc
        return doc

    def calls(self, method: str, suffix: str = "") -> List[Optional[Dict[str, Any]]]:
        return [body for m, path, body in self.requests if m == method and path.endswith(suffix)]

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        path = request.url.path[len("/api"):]
        self.requests.append((request.method, path, body))

        if self.fail_next:
            return httpx.Response(self.fail_next.pop(0), json={"message": "backend failure"})

        parts = path.strip("/").split("/")

        if request.method == "GET" and parts == ["trades"]:
            status = request.url.params.get("status")
            rows = [t for t in self.trades.values() if status is None or t["status"] == status]
            return httpx.Response(200, json={"status_code": 200, "message": "ok", "data": rows, "error": None})

        if request.method == "POST" and parts == ["trade"]:
            if self.reject_create:
                return httpx.Response(400, json={"message": self.reject_create})
            doc = self.add_trade(
                symbol=body["symbol"],
                type=body["type"],
                lotSize=body["lotSize"],
                entryPrice=body["entryPrice"],
                stopLoss=body["stopLoss"],
                takeProfit=body["takeProfit"],
            )
            return httpx.Response(201, json={"trade": doc})

        if parts[:1] == ["trade"] and len(parts) == 3:
            trade = self.trades.get(parts[1])
            if trade is None:
                return httpx.Response(404, json={"message": "Trade not found"})

            if request.method == "POST" and parts[2] == "close":
                if trade["status"] == "closed":
                    return httpx.Response(
                        409, json={"error": {"code": "ALREADY_CLOSED", "message": "Trade already closed"}}
                    )
                trade.update(
                    status="closed",
                    exitPrice=body["exitPrice"],
                    profit=body["pnl"],
                    closedAt="2026-01-05T12:00:00Z",
                )
                return httpx.Response(200, json=trade)

            if request.method == "PUT" and parts[2] == "sl-tp":
                trade.update(stopLoss=body["stopLoss"], takeProfit=body["takeProfit"])
                return httpx.Response(200, json={"trade": trade})

        if request.method == "GET" and parts[:1] == ["users"]:
            return httpx.Response(200, json={"user": {"_id": parts[1], "demoBalance": str(self.balance)}})

        return httpx.Response(404, json={"message": f"No route {request.method} {path}"})


class HeldListing:
    """
    Open-trade listing that fetches, then waits for `release` before
    returning, so other writes can land while a reconcile is in flight.
    """

    def __init__(self, api: TradeApiClient):
        self.fetched = asyncio.Event()
        self.release = asyncio.Event()
        self._list_open_trades = api.list_open_trades

    async def __call__(self) -> List[Position]:
        rows = await self._list_open_trades()
        self.fetched.set()
        await self.release.wait()
        return rows


# ==================== CLOCK & PRICES ====================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def tick_cache(clock) -> TickCache:
    return TickCache(staleness_seconds=30, clock=clock)


@pytest.fixture
def feed(tick_cache) -> InMemoryPriceFeed:
    return InMemoryPriceFeed(tick_cache)


@pytest.fixture
def push(feed, clock):
    """Push a tick stamped with the test clock"""
    async def _push(symbol: str, price: str) -> Tick:
        tick = Tick(symbol=symbol, price=Decimal(price), observed_at=clock())
        await feed.push_tick(tick)
        return tick
    return _push


@pytest.fixture
def registry() -> InstrumentRegistry:
    return InstrumentRegistry()


# ==================== POSITIONS ====================

@pytest.fixture
def make_position():
    """Factory for Position snapshots with sensible defaults"""
    def _make(**fields: Any) -> Position:
        data = {
            "id": "p1",
            "symbol": "EUR/USD",
            "side": "long",
            "lot_size": "10",
            "entry_price": "1.10000",
        }
        data.update(fields)
        return Position.model_validate(data)
    return _make


# ==================== BACKEND ====================

@pytest.fixture
def backend() -> FakeTradeBackend:
    return FakeTradeBackend()


@pytest.fixture
async def api(backend):
    client = TradeApiClient(BACKEND_URL, token="test-token", transport=httpx.MockTransport(backend.handle))
    yield client
    await client.close()


@pytest.fixture
def lifecycle(api, feed, registry) -> TradeLifecycleClient:
    return TradeLifecycleClient(api, feed, registry, account_id=ACCOUNT_ID)


@pytest.fixture
def hold_listing(lifecycle):
    """Patch the open-trade listing with a HeldListing; use as a context manager"""
    def _hold():
        return patch.object(lifecycle.api, "list_open_trades", HeldListing(lifecycle.api))
    return _hold
