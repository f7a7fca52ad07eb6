"""
Instrument Registry

Single source of truth for per-symbol pip economics, plus symbol
normalization shared by the feed and the trade client.

Author: FX Engine Team
"""

from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional, Set

from app.domain.models.instrument import InstrumentSpec
from app.utils.logger import get_logger
from app.utils.validators import to_decimal

logger = get_logger(__name__)


# Chart/provider names the client uses for the same instrument
SYMBOL_ALIASES: Dict[str, str] = {
    "GOLD": "XAU/USD",
    "SILVER": "XAG/USD",
}

BUILTIN_INSTRUMENTS: Dict[str, InstrumentSpec] = {
    "EUR/USD": InstrumentSpec("EUR/USD", 4, Decimal("10"), Decimal("200")),
    "USD/CHF": InstrumentSpec("USD/CHF", 4, Decimal("10"), Decimal("200")),
    "XAU/USD": InstrumentSpec("XAU/USD", 2, Decimal("1"), Decimal("200")),
}

# Used when a symbol has no entry; the flat 200-units-per-lot multiplier
DEFAULT_PIP_DECIMAL_PLACE = 4
DEFAULT_PIP_VALUE_PER_LOT = Decimal("10")
DEFAULT_UNITS_PER_LOT = Decimal("200")


def normalize_symbol(symbol: str) -> str:
    """
    Normalize symbol to universal format.

    Args:
        symbol: Symbol in any format

    Returns:
        Symbol in universal format (BASE/QUOTE)

    Example:
        normalize_symbol("eur/usd") -> "EUR/USD"
        normalize_symbol("EUR-USD") -> "EUR/USD"
        normalize_symbol("FX:EURUSD") -> "EUR/USD"
        normalize_symbol("TVC:GOLD") -> "XAU/USD"
    """
    symbol = symbol.strip().upper()

    # Drop provider prefix ("FX:", "TVC:", "OANDA:")
    if ":" in symbol:
        symbol = symbol.split(":", 1)[1]

    if symbol in SYMBOL_ALIASES:
        return SYMBOL_ALIASES[symbol]

    symbol = symbol.replace("-", "/").replace("_", "/")

    # EURUSD -> EUR/USD
    if "/" not in symbol and len(symbol) == 6 and symbol.isalpha():
        symbol = f"{symbol[:3]}/{symbol[3:]}"

    return symbol


class InstrumentRegistry:
    """
    Lookup table of InstrumentSpec by normalized symbol.

    Unknown symbols fall back to the default spec. That is a degraded-fidelity
    condition: it is logged once per symbol and reported by is_degraded().

    Usage:
        registry = InstrumentRegistry()
        spec = registry.get("EURUSD")       # EUR/USD entry
        spec = registry.get("GBP/JPY")      # default spec, logged
        registry.is_degraded("GBP/JPY")     # True
    """

    def __init__(
        self,
        instruments: Optional[Iterable[InstrumentSpec]] = None,
        default: Optional[InstrumentSpec] = None,
    ):
        """
        Initialize registry.

        Args:
            instruments: Specs to register (defaults to the built-in table)
            default: Template used for unknown symbols
        """
        self._instruments: Dict[str, InstrumentSpec] = {}
        for spec in (BUILTIN_INSTRUMENTS.values() if instruments is None else instruments):
            self.register(spec)

        self.default = default or InstrumentSpec(
            symbol="*",
            pip_decimal_place=DEFAULT_PIP_DECIMAL_PLACE,
            pip_value_per_lot=DEFAULT_PIP_VALUE_PER_LOT,
            units_per_lot=DEFAULT_UNITS_PER_LOT,
        )
        self._degraded: Set[str] = set()

    @classmethod
    def from_settings(cls, settings: Any) -> "InstrumentRegistry":
        """
        Build registry from built-ins plus settings.INSTRUMENTS overrides.

        Args:
            settings: Settings instance

        Returns:
            InstrumentRegistry
        """
        default = InstrumentSpec(
            symbol="*",
            pip_decimal_place=settings.DEFAULT_PIP_DECIMAL_PLACE,
            pip_value_per_lot=to_decimal(settings.DEFAULT_PIP_VALUE_PER_LOT, "pip_value_per_lot"),
            units_per_lot=to_decimal(settings.DEFAULT_UNITS_PER_LOT, "units_per_lot"),
        )
        registry = cls(default=default)
        for symbol, fields in (settings.INSTRUMENTS or {}).items():
            registry.register(cls.spec_from_mapping(symbol, fields, default))
        return registry

    @staticmethod
    def spec_from_mapping(
        symbol: str,
        fields: Mapping[str, Any],
        default: InstrumentSpec,
    ) -> InstrumentSpec:
        """Build a spec from a config mapping; missing fields come from `default`."""
        return InstrumentSpec(
            symbol=normalize_symbol(symbol),
            pip_decimal_place=int(fields.get("pip_decimal_place", default.pip_decimal_place)),
            pip_value_per_lot=to_decimal(
                fields.get("pip_value_per_lot", default.pip_value_per_lot), "pip_value_per_lot"
            ),
            units_per_lot=to_decimal(
                fields.get("units_per_lot", default.units_per_lot), "units_per_lot"
            ),
        )

    def register(self, spec: InstrumentSpec) -> None:
        """Add or replace the entry for spec.symbol."""
        symbol = normalize_symbol(spec.symbol)
        if symbol != spec.symbol:
            spec = InstrumentSpec(symbol, spec.pip_decimal_place, spec.pip_value_per_lot, spec.units_per_lot)
        self._instruments[symbol] = spec

    def has(self, symbol: str) -> bool:
        return normalize_symbol(symbol) in self._instruments

    def get(self, symbol: str) -> InstrumentSpec:
        """
        Get spec for symbol, falling back to the default.

        Args:
            symbol: Symbol in any format

        Returns:
            InstrumentSpec (default economics under the requested symbol if unknown)
        """
        normalized = normalize_symbol(symbol)
        spec = self._instruments.get(normalized)
        if spec is not None:
            return spec

        if normalized not in self._degraded:
            self._degraded.add(normalized)
            logger.warning(
                f"No instrument spec for {normalized}; using default pip economics "
                f"(pip_decimal_place={self.default.pip_decimal_place}, "
                f"pip_value_per_lot={self.default.pip_value_per_lot}, "
                f"units_per_lot={self.default.units_per_lot}). Valuations are degraded."
            )

        return InstrumentSpec(
            symbol=normalized,
            pip_decimal_place=self.default.pip_decimal_place,
            pip_value_per_lot=self.default.pip_value_per_lot,
            units_per_lot=self.default.units_per_lot,
        )

    def is_degraded(self, symbol: str) -> bool:
        """True if symbol has no explicit entry."""
        return not self.has(symbol)

    @property
    def degraded_symbols(self) -> Set[str]:
        """Symbols that have been served the default spec so far."""
        return set(self._degraded)

    @property
    def symbols(self) -> Set[str]:
        return set(self._instruments)

    def normalize(self, symbol: str) -> str:
        return normalize_symbol(symbol)
