"""
Engine settings using Pydantic Settings.

Loads configuration from environment variables with validation.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Engine settings loaded from environment variables.

    All settings are loaded from .env file or environment variables.
    Every field has a default so the engine can boot against a local backend.
    """

    # App Configuration
    APP_NAME: str = Field(default="FX Position Engine")
    APP_VERSION: str = Field(default="1.0.0")
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # Server
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="colored")
    LOG_FILE_PATH: Optional[str] = Field(default=None)

    # Trade backend (system of record)
    BACKEND_URL: str = Field(default="http://localhost:3000/api")
    BACKEND_TOKEN: Optional[str] = Field(default=None, description="Bearer token for the trade API")
    BACKEND_TIMEOUT_SECONDS: float = Field(default=10.0)
    ACCOUNT_ID: str = Field(default="me", description="User id whose balance guards new trades")

    # Market data channel
    FEED_URL: str = Field(default="http://localhost:3000")
    FEED_TOKEN: Optional[str] = Field(default=None)
    FEED_EVENT: str = Field(default="receive_price")
    FEED_RECONNECT_DELAY: float = Field(default=1.0)
    FEED_RECONNECT_DELAY_MAX: float = Field(default=60.0)

    # Evaluation cadence
    STALENESS_SECONDS: float = Field(default=30.0)
    POLL_INTERVAL_SECONDS: float = Field(default=10.0)
    RECONCILE_INTERVAL_SECONDS: float = Field(default=60.0)

    # Instrument economics
    INSTRUMENTS: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="symbol -> {pip_decimal_place, pip_value_per_lot, units_per_lot}"
    )
    DEFAULT_PIP_DECIMAL_PLACE: int = Field(default=4)
    DEFAULT_PIP_VALUE_PER_LOT: Decimal = Field(default=Decimal("10"))
    DEFAULT_UNITS_PER_LOT: Decimal = Field(default=Decimal("200"))

    # CORS
    CORS_ORIGINS: List[str] = Field(default=["http://localhost:3000", "http://localhost:5173"])

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v) -> List[str]:
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        elif isinstance(v, list):
            return v
        return []

    @field_validator(
        "STALENESS_SECONDS",
        "POLL_INTERVAL_SECONDS",
        "RECONCILE_INTERVAL_SECONDS",
        "BACKEND_TIMEOUT_SECONDS",
        "FEED_RECONNECT_DELAY",
        "FEED_RECONNECT_DELAY_MAX",
    )
    @classmethod
    def validate_positive_interval(cls, v: float) -> float:
        """Validate intervals and timeouts are positive."""
        if v <= 0:
            raise ValueError("interval must be positive")
        return v

    @field_validator("DEFAULT_PIP_DECIMAL_PLACE")
    @classmethod
    def validate_pip_decimal_place(cls, v: int) -> int:
        """Validate pip decimal place is non-negative."""
        if v < 0:
            raise ValueError("DEFAULT_PIP_DECIMAL_PLACE cannot be negative")
        return v

    @field_validator("DEFAULT_UNITS_PER_LOT")
    @classmethod
    def validate_units_per_lot(cls, v: Decimal) -> Decimal:
        """Validate lot multiplier is positive."""
        if v <= 0:
            raise ValueError("DEFAULT_UNITS_PER_LOT must be positive")
        return v

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore",
    }


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings instance (lazy loading)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


settings = get_settings()
