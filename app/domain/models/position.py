"""
Position Domain Model

Pure Pydantic domain model for positions held by the trade backend.
No network dependencies - parsing and invariants only.
"""

from typing import Optional, Any
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pydantic import AliasChoices, BaseModel, Field, field_validator

from app.shared.models import DomainModel
from app.utils.validators import (
    to_decimal,
    validate_non_empty_string,
    validate_non_negative_number,
    validate_positive_number,
)


# ==================== ENUMS ====================

class PositionStatus(str, Enum):
    """Position status as stored by the backend"""
    OPEN = "open"
    CLOSED = "closed"


class PositionSide(str, Enum):
    """Position side"""
    LONG = "long"
    SHORT = "short"


# The backend stores trades as buy/sell
_SIDE_ALIASES = {
    "buy": PositionSide.LONG,
    "long": PositionSide.LONG,
    "sell": PositionSide.SHORT,
    "short": PositionSide.SHORT,
}


def _parse_side(value: Any) -> Any:
    if isinstance(value, str):
        side = _SIDE_ALIASES.get(value.strip().lower())
        if side is None:
            raise ValueError(f"Unknown side: {value}")
        return side
    return value


def _parse_optional_threshold(value: Any, field_name: str) -> Decimal:
    # Missing, null and 0 all mean "disabled"
    if value is None or value == "":
        return Decimal("0")
    return validate_non_negative_number(to_decimal(value, field_name), field_name)


# ==================== MAIN POSITION MODEL ====================

class Position(DomainModel):
    """
    Position Domain Model

    Immutable snapshot of one trade. The backend is the system of record;
    the engine only ever replaces snapshots, it never edits them in place.

    Usage:
        position = Position.model_validate({
            "_id": "65f0...",
            "symbol": "EUR/USD",
            "type": "buy",
            "lotSize": 10,
            "entryPrice": "1.10000",
            "stopLoss": 0,
            "takeProfit": "1.10500",
            "status": "open",
        })

        closed = position.model_copy(update={
            "status": PositionStatus.CLOSED,
            "exit_price": Decimal("1.10500"),
            "realized_pnl": Decimal("5000.00"),
        })
    """

    # Identity
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    symbol: str

    # Trade
    side: PositionSide = Field(validation_alias=AliasChoices("side", "type"))
    lot_size: Decimal = Field(validation_alias=AliasChoices("lot_size", "lotSize"))
    entry_price: Decimal = Field(validation_alias=AliasChoices("entry_price", "entryPrice"))

    # Risk thresholds (0 = disabled)
    stop_loss: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("stop_loss", "stopLoss"),
    )
    take_profit: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("take_profit", "takeProfit"),
    )

    # Lifecycle
    status: PositionStatus = PositionStatus.OPEN
    opened_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        validation_alias=AliasChoices("opened_at", "openedAt", "createdAt"),
    )
    closed_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("closed_at", "closedAt"),
    )
    exit_price: Optional[Decimal] = Field(
        default=None,
        validation_alias=AliasChoices("exit_price", "exitPrice"),
    )
    realized_pnl: Optional[Decimal] = Field(
        default=None,
        validation_alias=AliasChoices("realized_pnl", "realizedPnl", "profit"),
    )

    @field_validator("id", mode="before")
    @classmethod
    def parse_id(cls, v: Any) -> str:
        return validate_non_empty_string(str(v), "id")

    @field_validator("symbol", mode="before")
    @classmethod
    def parse_symbol(cls, v: Any) -> str:
        return validate_non_empty_string(str(v), "symbol")

    @field_validator("side", mode="before")
    @classmethod
    def parse_side(cls, v: Any) -> Any:
        return _parse_side(v)

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("lot_size", "entry_price", mode="before")
    @classmethod
    def parse_positive_decimal(cls, v: Any, info) -> Decimal:
        return validate_positive_number(to_decimal(v, info.field_name), info.field_name)

    @field_validator("stop_loss", "take_profit", mode="before")
    @classmethod
    def parse_threshold(cls, v: Any, info) -> Decimal:
        return _parse_optional_threshold(v, info.field_name)

    @field_validator("exit_price", "realized_pnl", mode="before")
    @classmethod
    def parse_optional_decimal(cls, v: Any, info) -> Optional[Decimal]:
        if v is None:
            return None
        return to_decimal(v, info.field_name)

    @field_validator("opened_at", "closed_at", mode="after")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def stop_loss_enabled(self) -> bool:
        return self.stop_loss != 0

    @property
    def take_profit_enabled(self) -> bool:
        return self.take_profit != 0

    def is_open(self) -> bool:
        """Check if position is open"""
        return self.status == PositionStatus.OPEN

    def is_closed(self) -> bool:
        """Check if position is closed"""
        return self.status == PositionStatus.CLOSED


# ==================== REQUESTS ====================

class OpenTradeRequest(BaseModel):
    """
    Request to open a market position at the current tick.

    Thresholds default to 0 (disabled).
    """
    symbol: str
    side: PositionSide
    lot_size: Decimal
    stop_loss: Decimal = Decimal("0")
    take_profit: Decimal = Decimal("0")

    @field_validator("symbol", mode="before")
    @classmethod
    def parse_symbol(cls, v: Any) -> str:
        return validate_non_empty_string(str(v), "symbol")

    @field_validator("side", mode="before")
    @classmethod
    def parse_side(cls, v: Any) -> Any:
        return _parse_side(v)

    @field_validator("lot_size", mode="before")
    @classmethod
    def parse_lot_size(cls, v: Any) -> Decimal:
        # Positivity is a lifecycle guard so it surfaces as ValidationError there
        return to_decimal(v, "lot_size")

    @field_validator("stop_loss", "take_profit", mode="before")
    @classmethod
    def parse_threshold(cls, v: Any, info) -> Decimal:
        return _parse_optional_threshold(v, info.field_name)


class ThresholdUpdate(BaseModel):
    """New stop loss / take profit for an open position (0 disables)."""
    stop_loss: Decimal = Decimal("0")
    take_profit: Decimal = Decimal("0")

    @field_validator("stop_loss", "take_profit", mode="before")
    @classmethod
    def parse_threshold(cls, v: Any, info) -> Decimal:
        return _parse_optional_threshold(v, info.field_name)
