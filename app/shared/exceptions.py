"""
Custom exception classes for the position engine.

All custom exceptions inherit from base AppException for consistent error handling.
"""

from typing import Optional


class AppException(Exception):
    """
    Base application exception.

    All custom exceptions should inherit from this class.

    Attributes:
        message: Error message
        code: Error code
        status_code: HTTP status code
    """

    def __init__(
        self,
        message: str,
        code: str = "APP_ERROR",
        status_code: int = 500
    ):
        """
        Initialize AppException.

        Args:
            message: Error message
            code: Error code
            status_code: HTTP status code
        """
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(self.message)


# Market Data Exceptions

class FeedUnavailableError(AppException):
    """No tick for the symbol, or the last tick is older than the staleness bound."""

    def __init__(self, message: str = "Price feed unavailable", symbol: Optional[str] = None):
        self.symbol = symbol
        super().__init__(message=message, code="FEED_UNAVAILABLE", status_code=503)


# Validation Exceptions

class ValidationError(AppException):
    """Validation error."""

    def __init__(self, message: str = "Validation failed"):
        super().__init__(message=message, code="VALIDATION_ERROR", status_code=422)


class InvalidThresholdError(AppException):
    """Stop loss or take profit on the wrong side of the current price."""

    def __init__(self, message: str = "Invalid stop loss / take profit"):
        super().__init__(message=message, code="INVALID_THRESHOLD", status_code=422)


class InsufficientBalanceError(AppException):
    """Position notional exceeds account balance."""

    def __init__(self, message: str = "Insufficient balance"):
        super().__init__(message=message, code="INSUFFICIENT_BALANCE", status_code=422)


# Backend Exceptions

class BackendUnreachableError(AppException):
    """Network or HTTP failure talking to the trade backend."""

    def __init__(self, message: str = "Trade backend unreachable"):
        super().__init__(message=message, code="BACKEND_UNREACHABLE", status_code=502)


class AlreadyClosedError(AppException):
    """Position is already closed."""

    def __init__(self, message: str = "Position already closed", position_id: Optional[str] = None):
        self.position_id = position_id
        super().__init__(message=message, code="ALREADY_CLOSED", status_code=409)


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message=message, code="NOT_FOUND", status_code=404)
