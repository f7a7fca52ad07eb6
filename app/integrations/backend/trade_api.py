"""
Trade Backend API Client

Thin httpx wrapper over the backend trade ledger. Maps transport and HTTP
failures onto the engine error taxonomy; no caching, no validation.

Endpoints:
    GET  /trades?status=open
    POST /trade
    POST /trade/{id}/close
    PUT  /trade/{id}/sl-tp
    GET  /users/{id}

Author: FX Engine Team
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from app.domain.models.position import Position
from app.shared.exceptions import (
    AlreadyClosedError,
    BackendUnreachableError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from app.utils.logger import get_logger
from app.utils.validators import to_decimal

logger = get_logger(__name__)


ENVELOPE_KEYS = {"status_code", "message", "data", "error", "success"}


def _unwrap(payload: Any) -> Any:
    """Accept bare JSON or a {"data": ...} envelope."""
    if isinstance(payload, dict) and "data" in payload and set(payload) <= ENVELOPE_KEYS:
        return payload["data"]
    return payload


def _error_detail(response: httpx.Response) -> tuple[str, str]:
    """Extract (code, message) from an error response body."""
    try:
        body = response.json()
    except ValueError:
        return "", response.text[:200]

    if not isinstance(body, dict):
        return "", str(body)[:200]

    error = body.get("error")
    if isinstance(error, dict):
        return str(error.get("code", "")), str(error.get("message", ""))

    message = body.get("message") or body.get("detail") or error or ""
    return str(body.get("code", "")), str(message)


class TradeApiClient:
    """
    Async client for the trade backend.

    Usage:
        api = TradeApiClient("http://localhost:3000/api", token="jwt")
        positions = await api.list_open_trades()
        await api.close()
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize client.

        Args:
            base_url: Backend API root
            token: Bearer token
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"User-Agent": "FxPositionEngine/1.0"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        position_id: Optional[str] = None,
        **kwargs: Any,
    ) -> Any:
        """
        Send request and map failures.

        Raises:
            BackendUnreachableError: Transport error or 5xx
            NotFoundError: 404
            AlreadyClosedError: 409
            InsufficientBalanceError: 4xx flagged as insufficient balance
            ValidationError: Other 4xx
        """
        client = await self._get_client()

        try:
            response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Trade backend {method} {path} failed: {e}")
            raise BackendUnreachableError(f"{method} {path} failed: {e}") from e

        if response.is_success:
            if not response.content:
                return None
            try:
                return _unwrap(response.json())
            except ValueError as e:
                raise BackendUnreachableError(f"{method} {path} returned invalid JSON") from e

        code, message = _error_detail(response)
        status = response.status_code
        logger.warning(f"Trade backend {method} {path} -> {status} {code} {message}")

        if status >= 500:
            raise BackendUnreachableError(f"{method} {path} returned {status}: {message}")
        if status == 404:
            raise NotFoundError(message or f"{path} not found")
        if status == 409 or code.upper() == "ALREADY_CLOSED":
            raise AlreadyClosedError(message or "Position already closed", position_id=position_id)
        if code.upper() == "INSUFFICIENT_BALANCE" or "insufficient" in message.lower():
            raise InsufficientBalanceError(message or "Insufficient balance")
        raise ValidationError(message or f"{method} {path} rejected with {status}")

    @staticmethod
    def _parse_position(payload: Any) -> Position:
        if isinstance(payload, dict) and "trade" in payload and isinstance(payload["trade"], dict):
            payload = payload["trade"]
        try:
            return Position.model_validate(payload)
        except PydanticValidationError as e:
            raise BackendUnreachableError(f"Malformed trade payload from backend: {e}") from e

    # ==================== TRADES ====================

    async def list_open_trades(self) -> List[Position]:
        """GET /trades?status=open"""
        payload = await self._request("GET", "/trades", params={"status": "open"})
        if isinstance(payload, dict):
            payload = payload.get("trades") or payload.get("items") or []
        if not isinstance(payload, list):
            raise BackendUnreachableError("Malformed open-trade list from backend")

        positions: List[Position] = []
        for item in payload:
            try:
                position = self._parse_position(item)
            except BackendUnreachableError as e:
                logger.warning(f"Skipping open trade row: {e.message}")
                continue
            # The backend filter is authoritative, but never admit closed rows
            if position.is_open():
                positions.append(position)
        return positions

    async def create_trade(self, body: Dict[str, Any]) -> Position:
        """POST /trade"""
        payload = await self._request("POST", "/trade", json=body)
        return self._parse_position(payload)

    async def close_trade(
        self,
        position_id: str,
        exit_price: Decimal,
        pnl: Decimal,
        lot_size: Optional[Decimal] = None,
        reason: str = "manual",
    ) -> Optional[Position]:
        """
        POST /trade/{id}/close

        Returns:
            Closed position, or None when the backend acknowledges without a body
        """
        body: Dict[str, Any] = {
            "pnl": str(pnl),
            "exitPrice": str(exit_price),
            "reason": reason,
        }
        if lot_size is not None:
            body["lotSize"] = str(lot_size)

        payload = await self._request(
            "POST", f"/trade/{position_id}/close", position_id=position_id, json=body
        )
        if payload is None:
            return None
        return self._parse_position(payload)

    async def update_sl_tp(
        self,
        position_id: str,
        stop_loss: Decimal,
        take_profit: Decimal,
    ) -> Optional[Position]:
        """PUT /trade/{id}/sl-tp"""
        payload = await self._request(
            "PUT",
            f"/trade/{position_id}/sl-tp",
            position_id=position_id,
            json={"stopLoss": str(stop_loss), "takeProfit": str(take_profit)},
        )
        if payload is None:
            return None
        return self._parse_position(payload)

    # ==================== ACCOUNT ====================

    async def get_balance(self, user_id: str) -> Decimal:
        """GET /users/{id} -> demoBalance"""
        payload = await self._request("GET", f"/users/{user_id}")
        if isinstance(payload, dict) and isinstance(payload.get("user"), dict):
            payload = payload["user"]
        if not isinstance(payload, dict):
            raise BackendUnreachableError("Malformed user payload from backend")

        for key in ("demoBalance", "balance"):
            if payload.get(key) is not None:
                try:
                    return to_decimal(payload[key], key)
                except ValueError as e:
                    raise BackendUnreachableError(f"Malformed balance from backend: {e}") from e

        raise BackendUnreachableError(f"User {user_id} payload has no balance")
