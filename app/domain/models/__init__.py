"""
Domain Models

Pure domain models with no network dependencies.
"""

from app.shared.models import DomainModel
from app.domain.models.tick import Tick
from app.domain.models.instrument import InstrumentSpec
from app.domain.models.position import (
    Position,
    PositionStatus,
    PositionSide,
    OpenTradeRequest,
    ThresholdUpdate,
)
from app.domain.models.valuation import ValuationResult, PortfolioSnapshot

__all__ = [
    "DomainModel",
    "Tick",
    "InstrumentSpec",
    "Position",
    "PositionStatus",
    "PositionSide",
    "OpenTradeRequest",
    "ThresholdUpdate",
    "ValuationResult",
    "PortfolioSnapshot",
]
