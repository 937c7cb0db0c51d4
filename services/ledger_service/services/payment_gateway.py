"""
Client for the crypto payment gateway microservice.

The gateway watches blockchain addresses and exposes:
- POST /address           create a payment session and deposit address
- GET /session/{id}       session status and confirmations
- DELETE /session/{id}    cancel a session
- GET /health             liveness

Responses use a ``{"success": bool, "data": {...}, "error": str}`` envelope.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.currency import to_decimal
from libs.common.logging import get_logger

logger = get_logger(__name__)

# Must match the gateway's own confirmation policy
REQUIRED_CONFIRMATIONS = {"btc": 3, "eth": 12}
DEFAULT_REQUIRED_CONFIRMATIONS = 3


def required_confirmations_for(network: str) -> int:
    return REQUIRED_CONFIRMATIONS.get(network.lower(), DEFAULT_REQUIRED_CONFIRMATIONS)


@dataclass
class PaymentSession:
    """A freshly created payment session."""

    session_id: str
    payment_address: str
    expires_at: Optional[datetime]
    expected_amount: Optional[Decimal] = None


@dataclass
class SessionStatus:
    """Gateway view of a payment session."""

    status: str  # pending, detected, confirming, confirmed, completed, expired, failed
    confirmations: int
    tx_hash: Optional[str]
    received_amount_usd: Optional[Decimal]


class GatewayError(Exception):
    """Gateway unreachable or returned an error envelope."""

    def __init__(
        self, message: str, status_code: int = None, response_data: dict = None
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


def _parse_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable gateway timestamp %r", value)
        return None


class PaymentGatewayClient:
    """Async client for the payment gateway microservice."""

    def __init__(self, base_url: str = None, timeout: float = None):
        settings = get_settings()
        self.base_url = (base_url or settings.PAYMENT_GATEWAY_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict = None,
    ) -> dict:
        """Make an async request to the gateway and unwrap its envelope."""
        url = f"{self.base_url}{endpoint}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method=method, url=url, json=json_data)
        except httpx.HTTPError as e:
            logger.error("Payment gateway %s %s failed: %s", method, endpoint, e)
            raise GatewayError(f"Payment gateway unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success or not data.get("success"):
            logger.error(
                "Payment gateway error: %s - %s", response.status_code, data
            )
            raise GatewayError(
                message=data.get("error") or "Payment gateway request failed",
                status_code=response.status_code,
                response_data=data,
            )

        return data

    async def create_session(
        self,
        user_id: str,
        network: str,
        amount: Decimal,
        metadata: Optional[dict] = None,
    ) -> PaymentSession:
        """
        Open a payment session and obtain a deposit address.

        Args:
            user_id: Owner of the topup
            network: Network symbol (BTC, ETH, ...)
            amount: Expected amount in USD
            metadata: Extra data echoed back in webhooks

        Returns:
            PaymentSession with the address to pay
        """
        data = await self._request(
            "POST",
            "/address",
            json_data={
                "cryptocurrency": network.lower(),
                "userId": str(user_id),
                "amount": str(amount),
                "metadata": metadata or {},
            },
        )
        session = data.get("data") or {}
        if not session.get("sessionId") or not session.get("paymentAddress"):
            raise GatewayError("Payment gateway returned an incomplete session", response_data=data)

        expected = session.get("expectedAmount")
        logger.info(
            "Payment session created: network=%s amount=%s session=%s",
            network,
            amount,
            session["sessionId"],
        )
        return PaymentSession(
            session_id=session["sessionId"],
            payment_address=session["paymentAddress"],
            expires_at=_parse_datetime(session.get("expiresAt")),
            expected_amount=to_decimal(expected) if expected is not None else None,
        )

    async def get_session_status(self, session_id: str) -> SessionStatus:
        data = await self._request("GET", f"/session/{session_id}")
        session = data.get("data") or {}
        received = session.get("receivedAmountUsd")
        return SessionStatus(
            status=str(session.get("status") or "pending").lower(),
            confirmations=int(session.get("confirmations") or 0),
            tx_hash=session.get("txHash"),
            received_amount_usd=to_decimal(received) if received is not None else None,
        )

    async def cancel_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/session/{session_id}")
        logger.info("Payment session %s cancelled", session_id)

    async def is_available(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/health")
            return response.is_success
        except httpx.HTTPError as e:
            logger.warning("Payment gateway health check failed: %s", e)
            return False


_client: Optional[PaymentGatewayClient] = None


def get_payment_gateway() -> PaymentGatewayClient:
    """FastAPI dependency returning the process-wide gateway client."""
    global _client
    if _client is None:
        _client = PaymentGatewayClient()
    return _client
