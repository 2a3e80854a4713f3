"""
Razorpay Payment Gateway Implementation
Implements the BasePaymentGateway for Razorpay Orders/Payments/Refunds API (v1)
"""
import logging
import time
import httpx
from typing import Dict, Any, Optional

from marketplace.config import get_settings
from marketplace.core.exceptions import GatewayError
from marketplace.services.payment.gateways.base import (
    BasePaymentGateway,
    GatewayOrder,
    GatewayPayment,
    GatewayRefund,
)

logger = logging.getLogger(__name__)

# Razorpay rejects receipts longer than 40 characters
MAX_RECEIPT_LENGTH = 40


def build_receipt_id(prefix: str, now_ms: Optional[int] = None) -> str:
    """
    Short receipt id: prefix + last 8 digits of the millisecond timestamp.
    The full correlation id belongs in the order notes, since the provider
    does not round-trip long receipts.
    """
    timestamp = str(now_ms if now_ms is not None else int(time.time() * 1000))[-8:]
    return f"{prefix}{timestamp}"[:MAX_RECEIPT_LENGTH]


class RazorpayGateway(BasePaymentGateway):
    """
    Razorpay Payment Gateway Implementation

    Features:
    - Order creation for Standard Checkout
    - Payment lookup (method, bank, wallet, VPA)
    - Full and partial refunds
    """

    gateway_id = "razorpay"
    gateway_name = "Razorpay"

    API_URL = "https://api.razorpay.com/v1"

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """Initialize Razorpay gateway"""
        env_config = self._load_config_from_env()

        # Explicit config wins over environment values
        if config is not None:
            env_config.update({
                k: v for k, v in config.items()
                if v is not None
            })

        super().__init__(env_config)

        self.key_id = self.config.get("key_id")
        self.key_secret = self.config.get("key_secret")
        self.api_url = self.config.get("api_url", self.API_URL).rstrip("/")
        self.timeout = float(self.config.get("timeout", 15.0))
        self._transport = transport

    def _load_config_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        settings = get_settings()
        return {
            "key_id": settings.razorpay_key_id,
            "key_secret": settings.razorpay_key_secret,
            "api_url": settings.razorpay_api_url,
            "timeout": settings.razorpay_timeout_seconds,
        }

    def _validate_config(self):
        """Validate required Razorpay configuration"""
        if not self.config.get("key_id") or not self.config.get("key_secret"):
            raise GatewayError(
                "Razorpay not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET"
            )

    @property
    def public_key(self) -> Optional[str]:
        return self.key_id

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Call the Razorpay API and return the decoded body.
        Every failure is surfaced as GatewayError with the provider's
        description only; request details and credentials stay here.
        """
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=payload)
        except httpx.TimeoutException:
            logger.error("[GATEWAY] Razorpay %s %s timed out", method, path)
            raise GatewayError("Payment gateway timed out, please retry")
        except httpx.HTTPError as e:
            logger.error("[GATEWAY] Razorpay %s %s failed: %s", method, path, type(e).__name__)
            raise GatewayError("Payment gateway unreachable")

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code in (200, 201):
            if not isinstance(body, dict):
                logger.error("[GATEWAY] Razorpay %s %s returned a non-object body", method, path)
                raise GatewayError("Payment gateway returned an unexpected response")
            return body

        error = body.get("error") if isinstance(body, dict) else None
        if not isinstance(error, dict):
            error = {}
        description = error.get("description") or f"Gateway returned HTTP {response.status_code}"
        logger.warning(
            "[GATEWAY] Razorpay %s %s rejected (%s): %s",
            method, path, response.status_code, description
        )
        raise GatewayError(description, provider_code=error.get("code"))

    async def create_order(
        self,
        amount_minor_units: int,
        currency: str,
        receipt_id: str,
        notes: Optional[Dict[str, Any]] = None
    ) -> GatewayOrder:
        """Create a Razorpay order"""
        self._require_positive_int(amount_minor_units)

        payload = {
            "amount": amount_minor_units,
            "currency": currency,
            "receipt": receipt_id[:MAX_RECEIPT_LENGTH],
            "notes": {k: str(v) for k, v in (notes or {}).items() if v is not None},
        }

        data = await self._request("POST", "/orders", payload)
        if not data.get("id"):
            raise GatewayError("Payment gateway returned no order id")
        logger.info("[GATEWAY] Razorpay order created: %s", data.get("id"))

        return GatewayOrder(
            provider_order_id=data["id"],
            amount=data.get("amount", amount_minor_units),
            currency=data.get("currency", currency),
            status=data.get("status", "created"),
            created_at=data.get("created_at"),
            receipt=data.get("receipt"),
            raw_response=data
        )

    async def fetch_payment(self, provider_payment_id: str) -> GatewayPayment:
        """Fetch payment details from Razorpay"""
        data = await self._request("GET", f"/payments/{provider_payment_id}")

        return GatewayPayment(
            payment_id=data.get("id", provider_payment_id),
            order_id=data.get("order_id"),
            status=data.get("status"),
            amount=data.get("amount"),
            currency=data.get("currency"),
            method=data.get("method"),
            bank=data.get("bank"),
            wallet=data.get("wallet"),
            vpa=data.get("vpa"),
            raw_response=data
        )

    async def create_refund(
        self,
        provider_payment_id: str,
        amount_minor_units: int,
        notes: Optional[Dict[str, Any]] = None
    ) -> GatewayRefund:
        """Initiate a refund via Razorpay"""
        self._require_positive_int(amount_minor_units)

        payload = {
            "amount": amount_minor_units,
            "notes": {k: str(v) for k, v in (notes or {}).items() if v is not None},
        }

        data = await self._request("POST", f"/payments/{provider_payment_id}/refund", payload)
        if not data.get("id"):
            raise GatewayError("Payment gateway returned no refund id")
        logger.info("[GATEWAY] Razorpay refund %s for payment %s: %s",
                    data.get("id"), provider_payment_id, data.get("status"))

        return GatewayRefund(
            refund_id=data["id"],
            amount=data.get("amount", amount_minor_units),
            status=data.get("status", "pending"),
            payment_id=data.get("payment_id", provider_payment_id),
            raw_response=data
        )
