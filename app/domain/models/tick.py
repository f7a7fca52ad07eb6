"""
Tick Domain Model

One price observation for a symbol at a point in time.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict


@dataclass(frozen=True)
class Tick:
    """
    Latest price observation for a symbol.

    Frozen so a tick is always replaced as a whole: a reader holding a Tick
    never sees a price paired with another tick's timestamp.
    """
    symbol: str
    price: Decimal
    observed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def age_seconds(self, now: datetime) -> float:
        """Seconds elapsed between observation and `now`."""
        return (now - self.observed_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": str(self.price),
            "observed_at": self.observed_at.isoformat(),
        }
