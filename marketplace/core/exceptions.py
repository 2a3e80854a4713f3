"""
Payment Errors
Typed failures raised by the settlement core and mapped to HTTP responses
"""
from typing import Optional


class PaymentError(Exception):
    """Base class for all payment core errors"""

    status_code: int = 500
    default_message: str = "Payment processing error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(PaymentError):
    """Missing or malformed request field"""

    status_code = 400
    default_message = "Invalid request"

    def __init__(self, message: Optional[str] = None, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class NotFoundError(PaymentError):
    status_code = 404
    default_message = "Resource not found"


class SignatureMismatchError(PaymentError):
    """Authentication failure. The message never says which part failed."""

    status_code = 400
    default_message = "Invalid signature"


class InvalidStateError(PaymentError):
    """Transition not allowed from the record's current state"""

    status_code = 400
    default_message = "Operation not allowed in the current payment state"


class GatewayError(PaymentError):
    """Payment provider rejected the request or could not be reached"""

    status_code = 502
    default_message = "Payment gateway error"

    def __init__(self, message: Optional[str] = None, provider_code: Optional[str] = None):
        self.provider_code = provider_code
        super().__init__(message)


class SettlementError(PaymentError):
    """Commission bookkeeping failed after the capture was committed"""

    status_code = 500
    default_message = "Settlement bookkeeping failed"

    def __init__(
        self,
        message: Optional[str] = None,
        order_id: Optional[str] = None,
        payment_id: Optional[str] = None
    ):
        self.order_id = order_id
        self.payment_id = payment_id
        super().__init__(message)
