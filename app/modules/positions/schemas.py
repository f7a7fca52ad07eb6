"""
Position API Schemas

Pydantic schemas for position API requests and responses.

Author: FX Engine Team
"""

from typing import Optional, List, Any
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator

from app.domain.models.position import Position
from app.domain.models.valuation import ValuationResult
from app.utils.validators import to_decimal, validate_positive_number


# ==================== REQUEST SCHEMAS ====================

class ClosePositionRequest(BaseModel):
    """Manual close request; exit price defaults to the current tick"""
    exit_price: Optional[Decimal] = None

    @field_validator("exit_price", mode="before")
    @classmethod
    def parse_exit_price(cls, v: Any) -> Optional[Decimal]:
        if v is None:
            return None
        return validate_positive_number(to_decimal(v, "exit_price"), "exit_price")


# ==================== RESPONSE SCHEMAS ====================

class ValuationResponse(BaseModel):
    """Mark-to-market of one position"""
    position_id: str
    unrealized_pnl: Decimal
    pnl_percentage: Decimal
    current_price: Decimal
    as_of: datetime
    degraded: bool = False

    @classmethod
    def from_result(cls, result: ValuationResult) -> "ValuationResponse":
        return cls(
            position_id=result.position_id,
            unrealized_pnl=result.unrealized_pnl,
            pnl_percentage=result.pnl_percentage,
            current_price=result.current_price,
            as_of=result.as_of,
            degraded=result.degraded,
        )


class PositionResponse(BaseModel):
    """Position with its valuation (null when no fresh price)"""
    id: str
    symbol: str
    side: str
    lot_size: Decimal
    entry_price: Decimal
    stop_loss: Decimal
    take_profit: Decimal
    status: str
    opened_at: datetime
    closed_at: Optional[datetime] = None
    exit_price: Optional[Decimal] = None
    realized_pnl: Optional[Decimal] = None
    valuation: Optional[ValuationResponse] = None

    @classmethod
    def from_position(
        cls,
        position: Position,
        valuation: Optional[ValuationResult] = None,
    ) -> "PositionResponse":
        return cls(
            id=position.id,
            symbol=position.symbol,
            side=position.side.value,
            lot_size=position.lot_size,
            entry_price=position.entry_price,
            stop_loss=position.stop_loss,
            take_profit=position.take_profit,
            status=position.status.value,
            opened_at=position.opened_at,
            closed_at=position.closed_at,
            exit_price=position.exit_price,
            realized_pnl=position.realized_pnl,
            valuation=ValuationResponse.from_result(valuation) if valuation else None,
        )


class PositionListResponse(BaseModel):
    """Open positions plus portfolio totals"""
    positions: List[PositionResponse]
    total: int
    unavailable: List[str] = Field(default_factory=list)
    total_unrealized_pnl: Decimal
