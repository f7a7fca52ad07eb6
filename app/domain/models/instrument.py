"""
Instrument Domain Model

Per-symbol constants that turn a price delta into money.
"""

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class InstrumentSpec:
    """
    Pip economics for one tradable symbol.

    Attributes:
        symbol: Normalized symbol, e.g. "EUR/USD"
        pip_decimal_place: Decimal place of one pip (4 -> 0.0001)
        pip_value_per_lot: Account-currency value of one pip for one lot
        units_per_lot: Notional units per lot (lot-to-unit multiplier)
    """
    symbol: str
    pip_decimal_place: int
    pip_value_per_lot: Decimal
    units_per_lot: Decimal

    def __post_init__(self):
        if self.pip_decimal_place < 0:
            raise ValueError("pip_decimal_place must be >= 0")
        if self.units_per_lot <= 0:
            raise ValueError("units_per_lot must be > 0")
        if self.pip_value_per_lot < 0:
            raise ValueError("pip_value_per_lot cannot be negative")

    @property
    def pip_size(self) -> Decimal:
        """Price increment of one pip."""
        return Decimal(1).scaleb(-self.pip_decimal_place)

    def notional(self, lot_size: Decimal) -> Decimal:
        """Notional exposure of `lot_size` lots."""
        return lot_size * self.units_per_lot
