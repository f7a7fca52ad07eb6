"""
Position Management Router

FastAPI endpoints for position management.

Author: FX Engine Team
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from app.core.dependencies import get_engine
from app.core.responses import StandardResponse, success_response
from app.domain.models.position import OpenTradeRequest, ThresholdUpdate
from app.modules.positions.schemas import (
    ClosePositionRequest,
    PositionListResponse,
    PositionResponse,
    ValuationResponse,
)
from app.services.engine import PositionEngine
from app.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/positions", tags=["positions"])


# ==================== LIST POSITIONS ====================

@router.get("", response_model=StandardResponse)
async def list_positions(engine: PositionEngine = Depends(get_engine)):
    """List open positions with current valuations and portfolio totals"""
    snapshot = engine.valuate_all()
    by_id = {v.position_id: v for v in snapshot.valuations}

    positions = [
        PositionResponse.from_position(p, by_id.get(p.id))
        for p in engine.cached_open()
    ]
    data = PositionListResponse(
        positions=positions,
        total=len(positions),
        unavailable=snapshot.unavailable,
        total_unrealized_pnl=snapshot.total_unrealized_pnl,
    )
    return success_response(status.HTTP_200_OK, "Positions retrieved", data.model_dump(mode="json"))


# ==================== GET VALUATION ====================

@router.get("/{position_id}/valuation", response_model=StandardResponse)
async def get_valuation(position_id: str, engine: PositionEngine = Depends(get_engine)):
    """Current valuation of one position"""
    result = engine.valuate(position_id)
    data = ValuationResponse.from_result(result)
    return success_response(status.HTTP_200_OK, "Valuation retrieved", data.model_dump(mode="json"))


# ==================== OPEN POSITION ====================

@router.post("", response_model=StandardResponse, status_code=status.HTTP_201_CREATED)
async def open_position(request: OpenTradeRequest, engine: PositionEngine = Depends(get_engine)):
    """Open a position at the current tick"""
    position = await engine.open(request)
    data = PositionResponse.from_position(position)
    return success_response(status.HTTP_201_CREATED, "Position opened", data.model_dump(mode="json"))


# ==================== CLOSE POSITION ====================

@router.post("/{position_id}/close", response_model=StandardResponse)
async def close_position(
    position_id: str,
    request: Optional[ClosePositionRequest] = None,
    engine: PositionEngine = Depends(get_engine),
):
    """Close a position manually (at the current tick unless exit_price is given)"""
    exit_price = request.exit_price if request else None
    position = await engine.close(position_id, exit_price=exit_price)
    logger.info(f"Manual close of {position_id} via API")
    data = PositionResponse.from_position(position)
    return success_response(status.HTTP_200_OK, "Position closed", data.model_dump(mode="json"))


# ==================== UPDATE SL/TP ====================

@router.put("/{position_id}/sl-tp", response_model=StandardResponse)
async def update_thresholds(
    position_id: str,
    request: ThresholdUpdate,
    engine: PositionEngine = Depends(get_engine),
):
    """Replace stop loss / take profit (0 disables)"""
    position = await engine.update_thresholds(position_id, request.stop_loss, request.take_profit)
    data = PositionResponse.from_position(position)
    return success_response(status.HTTP_200_OK, "Thresholds updated", data.model_dump(mode="json"))
