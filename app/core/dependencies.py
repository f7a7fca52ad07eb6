"""
Core dependencies for FastAPI routes.

Provides the running PositionEngine to route handlers.
"""

from fastapi import Request

from app.services.engine import PositionEngine
from app.shared.exceptions import AppException


class EngineUnavailableError(AppException):
    """Engine not attached to the application"""

    def __init__(self, message: str = "Position engine is not running"):
        super().__init__(message, code="ENGINE_UNAVAILABLE", status_code=503)


def get_engine(request: Request) -> PositionEngine:
    """
    FastAPI dependency returning the engine built in the app lifespan.

    Tests attach a fake engine to app.state before requests.

    Example:
        @router.get("/")
        async def list_positions(engine: PositionEngine = Depends(get_engine)):
            return engine.valuate_all()
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise EngineUnavailableError()
    return engine
