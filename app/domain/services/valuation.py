"""
Position Valuation

Pure PnL arithmetic: (position, tick, instrument) -> ValuationResult.
No I/O, no caching, no clock except the optional `as_of` default.
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Optional

from app.domain.models.instrument import InstrumentSpec
from app.domain.models.position import Position, PositionSide
from app.domain.models.tick import Tick
from app.domain.models.valuation import ValuationResult
from app.shared.exceptions import FeedUnavailableError, ValidationError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

# Significant digits for intermediate arithmetic; inputs are exact decimals
WORKING_PRECISION = 28


def round2(value: Decimal) -> Decimal:
    """Round half away from zero to 2 decimal places."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def price_delta_in_owner_favor(position: Position, price: Decimal) -> Decimal:
    """Positive when the move from entry to `price` favors the position."""
    if position.side == PositionSide.LONG:
        return price - position.entry_price
    return position.entry_price - price


def pnl_at_price(position: Position, price: Decimal, instrument: InstrumentSpec) -> Decimal:
    """
    PnL of `position` if it were marked at `price`, rounded to cents.

    pips_moved = delta / pip_size
    pnl = pips_moved * pip_value_per_lot * lot_size
    """
    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION
        pips_moved = price_delta_in_owner_favor(position, price) / instrument.pip_size
        pip_value = instrument.pip_value_per_lot * position.lot_size
        return round2(pips_moved * pip_value)


def pnl_percentage(position: Position, pnl: Decimal) -> Decimal:
    """PnL as a percentage of entry_price * lot_size (0 when that is 0)."""
    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION
        denominator = position.entry_price * position.lot_size
        if denominator == 0:
            return round2(Decimal("0"))
        return round2(pnl / denominator * HUNDRED)


def valuate(
    position: Position,
    tick: Optional[Tick],
    instrument: InstrumentSpec,
    as_of: Optional[datetime] = None,
    degraded: bool = False,
) -> ValuationResult:
    """
    Value a position.

    Open positions are marked at `tick`. Closed positions return their stored
    realized PnL verbatim; the tick is ignored.

    Args:
        position: Position snapshot
        tick: Latest fresh tick for the position's symbol, or None
        instrument: Pip economics for the symbol
        as_of: Valuation time (defaults to the tick's observation time)
        degraded: Whether `instrument` is a fallback default

    Returns:
        ValuationResult

    Raises:
        FeedUnavailableError: Open position and no tick
        ValidationError: Tick for another symbol, or closed position without realized PnL
    """
    if position.is_closed():
        if position.realized_pnl is None:
            raise ValidationError(f"Closed position {position.id} has no realized PnL")

        realized = position.realized_pnl
        return ValuationResult(
            position_id=position.id,
            unrealized_pnl=realized,
            pnl_percentage=pnl_percentage(position, realized),
            current_price=position.exit_price if position.exit_price is not None else position.entry_price,
            as_of=position.closed_at or as_of or datetime.now(timezone.utc),
            degraded=degraded,
        )

    if tick is None:
        raise FeedUnavailableError(
            f"No fresh price for {position.symbol}",
            symbol=position.symbol,
        )

    if tick.symbol != position.symbol:
        raise ValidationError(
            f"Tick symbol {tick.symbol} does not match position symbol {position.symbol}"
        )

    pnl = pnl_at_price(position, tick.price, instrument)

    return ValuationResult(
        position_id=position.id,
        unrealized_pnl=pnl,
        pnl_percentage=pnl_percentage(position, pnl),
        current_price=tick.price,
        as_of=as_of or tick.observed_at,
        degraded=degraded,
    )
