"""
Base Payment Gateway
Abstract class defining the interface for all payment gateways
"""
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
from dataclasses import dataclass, field

from marketplace.core.exceptions import ValidationError


@dataclass
class GatewayOrder:
    """Result of creating a provider order"""
    provider_order_id: str
    amount: int                 # Minor units, as the provider echoes it
    currency: str
    status: str
    created_at: Optional[int] = None
    receipt: Optional[str] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayPayment:
    """Provider's canonical payment object"""
    payment_id: str
    order_id: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    method: Optional[str] = None
    bank: Optional[str] = None
    wallet: Optional[str] = None
    vpa: Optional[str] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayRefund:
    """Result of a refund request"""
    refund_id: str
    amount: int                 # Minor units
    status: str                 # pending | processed | failed
    payment_id: Optional[str] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)


class BasePaymentGateway(ABC):
    """
    Abstract base class for payment gateways.
    Instances hold configuration only, so one instance may serve
    any number of concurrent requests.
    """

    gateway_id: str = "base"
    gateway_name: str = "Base Gateway"

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize gateway with configuration.

        Args:
            config: Gateway configuration including API keys, endpoints, etc.
        """
        self.config = config
        self._validate_config()

    @abstractmethod
    def _validate_config(self):
        """Validate required configuration parameters"""
        pass

    @property
    @abstractmethod
    def public_key(self) -> Optional[str]:
        """Key the checkout page uses to open the provider widget"""
        pass

    @abstractmethod
    async def create_order(
        self,
        amount_minor_units: int,
        currency: str,
        receipt_id: str,
        notes: Optional[Dict[str, Any]] = None
    ) -> GatewayOrder:
        """
        Create a provider order.

        Args:
            amount_minor_units: Positive integer amount in the currency's minor unit
            currency: ISO currency code
            receipt_id: Short receipt id (provider length limits apply)
            notes: Free-form key/values echoed back by the provider

        Raises:
            GatewayError: If the provider rejects the request
        """
        pass

    @abstractmethod
    async def fetch_payment(self, provider_payment_id: str) -> GatewayPayment:
        """
        Fetch a payment to enrich the ledger with method metadata.

        Raises:
            GatewayError: If the provider lookup fails
        """
        pass

    @abstractmethod
    async def create_refund(
        self,
        provider_payment_id: str,
        amount_minor_units: int,
        notes: Optional[Dict[str, Any]] = None
    ) -> GatewayRefund:
        """
        Refund (part of) a captured payment.

        Raises:
            GatewayError: If the payment is not refundable or the call fails
        """
        pass

    @staticmethod
    def _require_positive_int(amount_minor_units: Any):
        if isinstance(amount_minor_units, bool) or not isinstance(amount_minor_units, int):
            raise ValidationError("Amount must be an integer in minor units", field="amount")
        if amount_minor_units <= 0:
            raise ValidationError("Amount must be positive", field="amount")
