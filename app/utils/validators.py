"""
Custom Pydantic validators for application models.

Provides reusable validators for common validation scenarios.
"""

from decimal import Decimal, InvalidOperation
from typing import Any


def to_decimal(value: Any, field_name: str = "Field") -> Decimal:
    """
    Coerce a number or numeric string to Decimal without float rounding.

    Args:
        value: int, float, str or Decimal
        field_name: Name of the field (for error message)

    Returns:
        Decimal: Parsed value

    Raises:
        ValueError: If value is not numeric or not finite

    Example:
        >>> to_decimal("1.10050", "price")
        Decimal('1.10050')
        >>> to_decimal(1.1, "price")
        Decimal('1.1')
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError(f"{field_name} must be a number")
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"{field_name} must be a number") from None
    else:
        raise ValueError(f"{field_name} must be a number")

    if not result.is_finite():
        raise ValueError(f"{field_name} must be finite")
    return result


def validate_non_empty_string(value: str, field_name: str = "Field") -> str:
    """
    Validate that string is not empty or whitespace only.

    Args:
        value: String to validate
        field_name: Name of the field (for error message)

    Returns:
        str: Stripped string

    Raises:
        ValueError: If string is empty
    """
    if not value or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value.strip()


def validate_positive_number(value: Decimal, field_name: str = "Field") -> Decimal:
    """
    Validate that number is positive.

    Args:
        value: Number to validate
        field_name: Name of the field (for error message)

    Returns:
        Decimal: Validated number

    Raises:
        ValueError: If number is not positive

    Example:
        >>> validate_positive_number(Decimal("10"), "lot_size")
        Decimal('10')
        >>> validate_positive_number(Decimal("-5"), "lot_size")
        ValueError: lot_size must be positive
    """
    if value <= 0:
        raise ValueError(f"{field_name} must be positive")
    return value


def validate_non_negative_number(value: Decimal, field_name: str = "Field") -> Decimal:
    """
    Validate that number is non-negative (>= 0).

    Args:
        value: Number to validate
        field_name: Name of the field (for error message)

    Returns:
        Decimal: Validated number

    Raises:
        ValueError: If number is negative
    """
    if value < 0:
        raise ValueError(f"{field_name} cannot be negative")
    return value
