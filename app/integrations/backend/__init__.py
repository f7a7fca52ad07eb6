"""
Backend Integrations

HTTP client for the trade ledger that owns positions and balances.
"""

from app.integrations.backend.trade_api import TradeApiClient

__all__ = ["TradeApiClient"]
