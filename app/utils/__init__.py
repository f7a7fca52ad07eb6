"""Utility functions package."""

from app.utils.logger import setup_logging, get_logger
from app.utils.validators import (
    to_decimal,
    validate_non_empty_string,
    validate_positive_number,
    validate_non_negative_number,
)

__all__ = [
    # Logger
    "setup_logging",
    "get_logger",
    # Validators
    "to_decimal",
    "validate_non_empty_string",
    "validate_positive_number",
    "validate_non_negative_number",
]
