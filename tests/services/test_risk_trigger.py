"""
Risk Trigger Evaluator Tests

Tests for stop loss / take profit detection, tick- and poll-driven
evaluation, duplicate-close protection and retry after failures.

Author: FX Engine Team
"""

import asyncio
import random
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from app.services.risk_trigger import (
    RiskTriggerEvaluator,
    TriggerKind,
    TriggerState,
    detect_trigger,
)
from app.shared.exceptions import AlreadyClosedError, BackendUnreachableError


# ==================== FIXTURES ====================

class FakeMonotonic:
    """Monotonic clock advanced by hand"""

    def __init__(self):
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def evaluator(lifecycle, feed, registry, monotonic):
    """Create evaluator with a long poll interval (cycles driven by hand)"""
    return RiskTriggerEvaluator(
        lifecycle, feed, registry, poll_interval=3600, reconcile_interval=60, monotonic=monotonic
    )


# ==================== DETECTION TESTS ====================

@pytest.mark.parametrize("side,sl,tp,price,expected", [
    ("long", "1.09", "1.11", "1.10", None),
    ("long", "1.09", "1.11", "1.09", TriggerKind.STOP_LOSS),
    ("long", "1.09", "1.11", "1.08", TriggerKind.STOP_LOSS),
    ("long", "1.09", "1.11", "1.11", TriggerKind.TAKE_PROFIT),
    ("long", "1.09", "1.11", "1.12", TriggerKind.TAKE_PROFIT),
    ("short", "1.11", "1.09", "1.10", None),
    ("short", "1.11", "1.09", "1.11", TriggerKind.STOP_LOSS),
    ("short", "1.11", "1.09", "1.12", TriggerKind.STOP_LOSS),
    ("short", "1.11", "1.09", "1.09", TriggerKind.TAKE_PROFIT),
    ("short", "1.11", "1.09", "1.05", TriggerKind.TAKE_PROFIT),
    ("long", "0", "1.11", "0.50", None),
    ("short", "0", "1.09", "2.00", None),
    ("long", "1.09", "0", "5.00", None),
    ("short", "1.11", "0", "0.01", None),
])
def test_detect_trigger(make_position, side, sl, tp, price, expected):
    """Test SL/TP crossing rules per side"""
    position = make_position(side=side, stop_loss=sl, take_profit=tp)

    assert detect_trigger(position, Decimal(price)) == expected


def test_stop_loss_wins_when_both_fire(make_position):
    """Test overlapping thresholds resolve to stop loss"""
    position = make_position(side="long", stop_loss="1.20", take_profit="1.00")

    assert detect_trigger(position, Decimal("1.10")) == TriggerKind.STOP_LOSS


@pytest.mark.parametrize("seed", range(25))
def test_disabled_thresholds_never_fire(make_position, seed):
    """Test a position with SL=TP=0 never triggers at any price"""
    rng = random.Random(seed)
    side = rng.choice(["long", "short"])
    position = make_position(side=side, entry_price=Decimal(rng.randint(1, 300000)) / 100000)

    for _ in range(50):
        price = Decimal(rng.randint(1, 10 ** 7)) / Decimal(10 ** 5)
        assert detect_trigger(position, price) is None


@pytest.mark.parametrize("seed", range(25))
def test_trigger_direction_matches_side(make_position, seed):
    """Test SL fires only on adverse moves and TP only on favorable ones"""
    rng = random.Random(seed)
    side = rng.choice(["long", "short"])
    entry = Decimal(rng.randint(100000, 120000)) / Decimal(100000)
    gap = Decimal(rng.randint(1, 500)) / Decimal(100000)
    sl = entry - gap if side == "long" else entry + gap
    tp = entry + gap if side == "long" else entry - gap
    position = make_position(side=side, entry_price=entry, stop_loss=sl, take_profit=tp)

    price = entry + Decimal(rng.randint(-1000, 1000)) / Decimal(100000)
    kind = detect_trigger(position, price)
    favorable = (price - entry) if side == "long" else (entry - price)

    if kind == TriggerKind.STOP_LOSS:
        assert favorable <= -gap
    elif kind == TriggerKind.TAKE_PROFIT:
        assert favorable >= gap
    else:
        assert -gap < favorable < gap


# ==================== EVALUATION TESTS ====================

@pytest.mark.asyncio
async def test_short_stop_loss_closes_at_tick_price(evaluator, lifecycle, backend, feed, push):
    """Test short SL crossed by a tick closes at that tick's price"""
    backend.add_trade(_id="s1", type="sell", entryPrice="1.10000", stopLoss="1.10050")
    await lifecycle.list_open()
    feed.subscribe(evaluator.on_tick)

    await push("EUR/USD", "1.10060")
    await evaluator.drain()

    bodies = backend.calls("POST", "/close")
    assert len(bodies) == 1
    assert bodies[0]["exitPrice"] == "1.10060"
    assert bodies[0]["pnl"] == "-600.00"
    assert bodies[0]["reason"] == "stop_loss"
    assert evaluator.state_of("s1") == TriggerState.CLOSED
    assert lifecycle.get_cached("s1").is_closed()


@pytest.mark.asyncio
async def test_take_profit_closes(evaluator, lifecycle, backend, push):
    """Test long TP reached closes with positive PnL"""
    backend.add_trade(_id="l1", takeProfit="1.10050")
    await lifecycle.list_open()
    await push("EUR/USD", "1.10050")

    outcome = await evaluator.evaluate_position("l1")

    assert outcome.kind == TriggerKind.TAKE_PROFIT
    assert outcome.closed is True
    assert outcome.pnl == Decimal("500.00")
    assert backend.calls("POST", "/close")[0]["reason"] == "take_profit"


@pytest.mark.asyncio
async def test_no_trigger_inside_band(evaluator, lifecycle, backend, push):
    """Test price between thresholds leaves the position open"""
    backend.add_trade(_id="l1", stopLoss="1.09", takeProfit="1.11")
    await lifecycle.list_open()
    await push("EUR/USD", "1.10")

    assert await evaluator.evaluate_position("l1") is None
    assert evaluator.state_of("l1") == TriggerState.OPEN
    assert backend.calls("POST", "/close") == []


@pytest.mark.asyncio
async def test_missing_price_skips_not_closes(evaluator, lifecycle, backend, push, clock):
    """Test a stale tick is treated as unknown, never as a trigger"""
    backend.add_trade(_id="l1", stopLoss="1.09")
    await lifecycle.list_open()
    await push("EUR/USD", "1.08")
    clock.advance(31)

    assert await evaluator.evaluate_position("l1") is None
    assert evaluator.stats["skipped_no_price"] == 1
    assert backend.calls("POST", "/close") == []


@pytest.mark.asyncio
async def test_ticks_for_other_symbols_ignored(evaluator, lifecycle, backend, feed, push):
    """Test a tick only schedules positions on its own symbol"""
    backend.add_trade(_id="l1", stopLoss="1.09")
    await lifecycle.list_open()
    feed.subscribe(evaluator.on_tick)

    await push("USD/CHF", "0.50")
    await evaluator.drain()

    assert backend.calls("POST", "/close") == []


# ==================== IDEMPOTENCE TESTS ====================

@pytest.mark.asyncio
async def test_concurrent_evaluations_close_once(evaluator, lifecycle, backend, push):
    """Test simultaneous evaluations of one breached position issue one close"""
    backend.add_trade(_id="l1", stopLoss="1.09")
    await lifecycle.list_open()
    await push("EUR/USD", "1.08")

    release = asyncio.Event()
    real_close = lifecycle.close

    async def slow_close(*args, **kwargs):
        await release.wait()
        return await real_close(*args, **kwargs)

    with patch.object(lifecycle, "close", AsyncMock(side_effect=slow_close)) as close_mock:
        tasks = [asyncio.create_task(evaluator.evaluate_position("l1")) for _ in range(5)]
        await asyncio.sleep(0)
        assert evaluator.state_of("l1") == TriggerState.CLOSING

        release.set()
        results = await asyncio.gather(*tasks)

    assert close_mock.await_count == 1
    assert len([r for r in results if r is not None]) == 1
    assert evaluator.state_of("l1") == TriggerState.CLOSED


@pytest.mark.asyncio
async def test_tick_burst_closes_once(evaluator, lifecycle, backend, feed, push):
    """Test a burst of breaching ticks yields one close command"""
    backend.add_trade(_id="l1", stopLoss="1.09")
    await lifecycle.list_open()
    feed.subscribe(evaluator.on_tick)

    for price in ("1.0890", "1.0880", "1.0870", "1.0860"):
        await push("EUR/USD", price)
    await evaluator.drain()
    await evaluator.evaluate_all()

    assert len(backend.calls("POST", "/close")) == 1


@pytest.mark.asyncio
async def test_closed_position_never_reevaluated(evaluator, lifecycle, backend, push):
    """Test CLOSED is terminal"""
    backend.add_trade(_id="l1", stopLoss="1.09")
    await lifecycle.list_open()
    await push("EUR/USD", "1.08")
    await evaluator.evaluate_position("l1")

    assert await evaluator.evaluate_position("l1") is None
    assert len(backend.calls("POST", "/close")) == 1


# ==================== FAILURE TESTS ====================

@pytest.mark.asyncio
async def test_failed_close_retried_on_next_pass(evaluator, lifecycle, backend, push):
    """Test backend outage returns the position to OPEN for a retry"""
    backend.add_trade(_id="l1", stopLoss="1.09")
    await lifecycle.list_open()
    await push("EUR/USD", "1.08")
    backend.fail_next.append(503)

    first = await evaluator.evaluate_position("l1")

    assert first.closed is False
    assert first.error
    assert evaluator.state_of("l1") == TriggerState.OPEN
    assert lifecycle.get_cached("l1").is_open()

    second = await evaluator.evaluate_position("l1")

    assert second.closed is True
    assert evaluator.state_of("l1") == TriggerState.CLOSED
    assert evaluator.stats["close_failures"] == 1
    assert len(backend.calls("POST", "/close")) == 2


@pytest.mark.asyncio
async def test_backend_already_closed_is_terminal(evaluator, lifecycle, backend, push):
    """Test a position closed elsewhere ends CLOSED without retries"""
    backend.add_trade(_id="l1", stopLoss="1.09")
    await lifecycle.list_open()
    backend.trades["l1"]["status"] = "closed"
    await push("EUR/USD", "1.08")

    outcome = await evaluator.evaluate_position("l1")

    assert outcome.closed is True
    assert evaluator.state_of("l1") == TriggerState.CLOSED


@pytest.mark.asyncio
async def test_backend_not_found_drops_position(evaluator, lifecycle, backend, push):
    """Test a vanished position is dropped and marked CLOSED"""
    backend.add_trade(_id="l1", stopLoss="1.09")
    await lifecycle.list_open()
    del backend.trades["l1"]
    await push("EUR/USD", "1.08")

    await evaluator.evaluate_position("l1")

    assert evaluator.state_of("l1") == TriggerState.CLOSED
    assert lifecycle.get_cached("l1") is None


# ==================== POLLING TESTS ====================

@pytest.mark.asyncio
async def test_run_cycle_reconciles_on_interval(evaluator, lifecycle, backend, push, monotonic):
    """Test cache re-sync runs on the first cycle and then every reconcile interval"""
    backend.add_trade(_id="l1", stopLoss="1.09")
    await push("EUR/USD", "1.10")

    await evaluator.run_cycle()
    monotonic.value = 30
    await evaluator.run_cycle()
    monotonic.value = 61
    await evaluator.run_cycle()

    assert len(backend.calls("GET", "/trades")) == 2
    assert lifecycle.get_cached("l1") is not None


@pytest.mark.asyncio
async def test_poll_closes_without_new_ticks(evaluator, lifecycle, backend, push):
    """Test polling catches a breach the tick path did not see"""
    await push("EUR/USD", "1.08")
    backend.add_trade(_id="l1", stopLoss="1.09")

    outcomes = await evaluator.run_cycle()

    assert [o.position_id for o in outcomes] == ["l1"]
    assert outcomes[0].kind == TriggerKind.STOP_LOSS


@pytest.mark.asyncio
async def test_reconcile_failure_uses_cache(evaluator, lifecycle, backend, push):
    """Test an unreachable backend during re-sync still evaluates cached positions"""
    backend.add_trade(_id="l1", stopLoss="1.09")
    await lifecycle.list_open()
    await push("EUR/USD", "1.08")
    backend.fail_next.append(503)

    outcomes = await evaluator.run_cycle()

    assert evaluator.stats["reconcile_failures"] == 1
    assert outcomes[0].closed is True


@pytest.mark.asyncio
async def test_stale_reconcile_does_not_restore_removed_stop_loss(
    evaluator, lifecycle, backend, push, hold_listing
):
    """Test a listing fetched before SL removal cannot trigger a close on the old SL"""
    backend.add_trade(_id="l1", stopLoss="1.09900")
    await lifecycle.list_open()
    await push("EUR/USD", "1.10000")

    with hold_listing() as held:
        cycle = asyncio.create_task(evaluator.run_cycle())
        await held.fetched.wait()
        await lifecycle.update_thresholds("l1", Decimal("0"), Decimal("0"))
        held.release.set()
        await cycle

    await push("EUR/USD", "1.09800")

    assert await evaluator.evaluate_position("l1") is None
    assert backend.calls("POST", "/close") == []


# ==================== MANUAL CLOSE TESTS ====================

@pytest.mark.asyncio
async def test_manual_close_at_current_tick(evaluator, lifecycle, backend, push):
    """Test manual close uses the fresh tick and ends CLOSED"""
    backend.add_trade(_id="l1", type="sell", lotSize="1")
    await lifecycle.list_open()
    await push("EUR/USD", "1.09500")

    closed = await evaluator.close_manually("l1")

    assert closed.is_closed()
    assert closed.exit_price == Decimal("1.09500")
    assert closed.realized_pnl == Decimal("500.00")
    assert backend.calls("POST", "/close")[0]["reason"] == "manual"
    assert evaluator.state_of("l1") == TriggerState.CLOSED
    assert evaluator.stats["manual_closes"] == 1


@pytest.mark.asyncio
async def test_manual_close_waits_for_auto_close(evaluator, lifecycle, backend, push):
    """Test a manual close racing an automatic one sends a single close command"""
    backend.add_trade(_id="l1", stopLoss="1.09")
    await lifecycle.list_open()
    await push("EUR/USD", "1.08")

    release = asyncio.Event()
    real_close = lifecycle.close

    async def slow_close(*args, **kwargs):
        await release.wait()
        return await real_close(*args, **kwargs)

    with patch.object(lifecycle, "close", AsyncMock(side_effect=slow_close)) as close_mock:
        auto = asyncio.create_task(evaluator.evaluate_position("l1"))
        await asyncio.sleep(0)
        manual = asyncio.create_task(evaluator.close_manually("l1"))
        await asyncio.sleep(0)
        assert not manual.done()

        release.set()
        outcome = await auto
        with pytest.raises(AlreadyClosedError):
            await manual

    assert outcome.closed is True
    assert close_mock.await_count == 1
    assert len(backend.calls("POST", "/close")) == 1
    assert lifecycle.get_cached("l1").is_closed()


@pytest.mark.asyncio
async def test_auto_close_skipped_during_manual_close(evaluator, lifecycle, backend, push):
    """Test ticks arriving while a manual close is in flight do not close again"""
    backend.add_trade(_id="l1", stopLoss="1.09")
    await lifecycle.list_open()
    await push("EUR/USD", "1.08")

    release = asyncio.Event()
    real_close = lifecycle.close

    async def slow_close(*args, **kwargs):
        await release.wait()
        return await real_close(*args, **kwargs)

    with patch.object(lifecycle, "close", AsyncMock(side_effect=slow_close)) as close_mock:
        manual = asyncio.create_task(evaluator.close_manually("l1"))
        await asyncio.sleep(0)
        assert evaluator.state_of("l1") == TriggerState.CLOSING

        assert await evaluator.evaluate_position("l1") is None

        release.set()
        closed = await manual

    assert closed.exit_price == Decimal("1.08")
    assert close_mock.await_count == 1
    assert evaluator.state_of("l1") == TriggerState.CLOSED


@pytest.mark.asyncio
async def test_manual_close_failure_returns_to_open(evaluator, lifecycle, backend, push):
    """Test a failed manual close leaves the position open for the evaluator"""
    backend.add_trade(_id="l1", stopLoss="1.09")
    await lifecycle.list_open()
    await push("EUR/USD", "1.10")
    backend.fail_next.append(503)

    with pytest.raises(BackendUnreachableError):
        await evaluator.close_manually("l1")

    assert evaluator.state_of("l1") == TriggerState.OPEN
    assert lifecycle.get_cached("l1").is_open()


# ==================== LIFECYCLE TESTS ====================

@pytest.mark.asyncio
async def test_start_stop(evaluator, feed):
    """Test start subscribes and stop detaches"""
    await evaluator.start()
    await evaluator.start()

    assert evaluator.is_running
    assert feed.subscriber_count == 1

    await evaluator.stop()

    assert not evaluator.is_running
    assert feed.subscriber_count == 0
