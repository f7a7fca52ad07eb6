"""
Valuation Domain Model

Derived, never persisted: the mark-to-market view of one position.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List


@dataclass(frozen=True)
class ValuationResult:
    """PnL of a position against a price at a point in time"""
    position_id: str
    unrealized_pnl: Decimal
    pnl_percentage: Decimal
    current_price: Decimal
    as_of: datetime
    degraded: bool = False  # instrument fell back to default pip economics

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position_id": self.position_id,
            "unrealized_pnl": str(self.unrealized_pnl),
            "pnl_percentage": str(self.pnl_percentage),
            "current_price": str(self.current_price),
            "as_of": self.as_of.isoformat(),
            "degraded": self.degraded,
        }


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Valuations of every cached open position"""
    valuations: List[ValuationResult] = field(default_factory=list)
    unavailable: List[str] = field(default_factory=list)

    @property
    def total_unrealized_pnl(self) -> Decimal:
        return sum((v.unrealized_pnl for v in self.valuations), Decimal("0.00"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valuations": [v.to_dict() for v in self.valuations],
            "unavailable": list(self.unavailable),
            "total_unrealized_pnl": str(self.total_unrealized_pnl),
        }
