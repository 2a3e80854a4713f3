"""
Payment Gateway Factory
Resolves a configured gateway client by provider name
"""
from typing import Dict, Any, Optional, Type, Tuple

from marketplace.services.payment.gateways.base import BasePaymentGateway
from marketplace.services.payment.gateways.razorpay import RazorpayGateway


class PaymentGatewayFactory:
    """
    Provider name -> gateway client.
    A client holds nothing but its credentials, so one instance per
    (provider, config) pair serves every request.
    """

    _gateways: Dict[str, Type[BasePaymentGateway]] = {
        "razorpay": RazorpayGateway,
    }

    _instances: Dict[Tuple[str, str], BasePaymentGateway] = {}

    @classmethod
    def register_gateway(cls, gateway_id: str, gateway_class: Type[BasePaymentGateway]):
        cls._gateways[gateway_id] = gateway_class

    @classmethod
    def get_available_gateways(cls) -> list:
        return list(cls._gateways.keys())

    @classmethod
    def get_gateway(
        cls,
        gateway_id: str = "razorpay",
        config: Optional[Dict[str, Any]] = None,
        use_cache: bool = True
    ) -> BasePaymentGateway:
        """
        Client for gateway_id. Without config the provider reads its
        credentials from the environment.

        Raises:
            ValueError: gateway_id is not registered
            GatewayError: Credentials missing
        """
        gateway_class = cls._gateways.get(gateway_id)
        if gateway_class is None:
            raise ValueError(f"Unknown payment gateway: {gateway_id}. Available: {cls.get_available_gateways()}")

        key = (gateway_id, repr(sorted(config.items())) if config else "env")
        if use_cache and key in cls._instances:
            return cls._instances[key]

        instance = gateway_class(config)
        if use_cache:
            cls._instances[key] = instance
        return instance

    @classmethod
    def clear_cache(cls):
        cls._instances.clear()
