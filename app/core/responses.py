"""
Standardized response models for API endpoints.

All engine API responses follow a consistent format for success and error cases.
"""

from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """
    Error detail model for error responses.
    
    Attributes:
        code: Error code (e.g., "FEED_UNAVAILABLE", "ALREADY_CLOSED")
        message: Detailed error message
    """
    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Detailed error message")


class StandardResponse(BaseModel):
    """
    Standard API response format.
    
    All API endpoints return this format for consistency.
    
    Attributes:
        status_code: HTTP status code
        message: Human-readable message
        data: Response data (null on error)
        error: Error details (null on success)
    """
    status_code: int = Field(..., description="HTTP status code")
    message: str = Field(..., description="Human-readable message")
    data: Optional[Any] = Field(default=None, description="Response data")
    error: Optional[ErrorDetail] = Field(default=None, description="Error details")
    
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status_code": 200,
                "message": "Operation successful",
                "data": {"position_id": "65f0a1", "unrealized_pnl": "500.00"},
                "error": None
            }
        }
    )


def success_response(
    status_code: int,
    message: str,
    data: Any = None
) -> dict:
    """
    Create a success response.
    
    Args:
        status_code: HTTP status code (200, 201, etc.)
        message: Success message
        data: Response data
        
    Returns:
        dict: Standardized success response
        
    Example:
        >>> success_response(200, "Valuation retrieved", {"unrealized_pnl": "500.00"})
        {
            "status_code": 200,
            "message": "Valuation retrieved",
            "data": {"unrealized_pnl": "500.00"},
            "error": None
        }
    """
    return {
        "status_code": status_code,
        "message": message,
        "data": data,
        "error": None
    }


def error_response(
    status_code: int,
    message: str,
    error_code: str,
    error_message: str
) -> dict:
    """
    Create an error response.
    
    Args:
        status_code: HTTP status code (404, 409, 422, 502, 503)
        message: General error message
        error_code: Specific error code
        error_message: Detailed error message
        
    Returns:
        dict: Standardized error response
        
    Example:
        >>> error_response(409, "Position closed", "ALREADY_CLOSED", "Position 65f0a1 already closed")
        {
            "status_code": 409,
            "message": "Position closed",
            "data": None,
            "error": {
                "code": "ALREADY_CLOSED",
                "message": "Position 65f0a1 already closed"
            }
        }
    """
    return {
        "status_code": status_code,
        "message": message,
        "data": None,
        "error": {
            "code": error_code,
            "message": error_message
        }
    }

