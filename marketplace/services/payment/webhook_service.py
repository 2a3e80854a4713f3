"""
Webhook Dispatcher
Authenticated, idempotent processing of Razorpay webhook events
"""
import json
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

from marketplace.config import get_settings
from marketplace.core.exceptions import PaymentError, SignatureMismatchError, ValidationError
from marketplace.services.payment.payment_service import PaymentService
from marketplace.services.payment.signature import verify_webhook

logger = logging.getLogger(__name__)

EVENT_PAYMENT_CAPTURED = "payment.captured"
EVENT_PAYMENT_FAILED = "payment.failed"
EVENT_REFUND_CREATED = "refund.created"
EVENT_REFUND_PROCESSED = "refund.processed"
EVENT_REFUND_FAILED = "refund.failed"


@dataclass
class WebhookResult:
    event: Optional[str]
    processed: bool
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"received": True, "event": self.event, "processed": self.processed, "message": self.message}


class WebhookDispatcher:
    """
    Routes provider events onto the payment service.

    Only an authentication failure is reported back as an error. Once the
    event is authenticated the provider always gets an acknowledgement,
    so a downstream problem does not trigger retries.
    """

    def __init__(self, payment_service: PaymentService, webhook_secret: Optional[str] = None):
        self.payment_service = payment_service
        self.webhook_secret = webhook_secret or get_settings().razorpay_webhook_secret

        self._handlers = {
            EVENT_PAYMENT_CAPTURED: self._handle_payment_captured,
            EVENT_PAYMENT_FAILED: self._handle_payment_failed,
            EVENT_REFUND_CREATED: self._handle_refund,
            EVENT_REFUND_PROCESSED: self._handle_refund,
            EVENT_REFUND_FAILED: self._handle_refund,
        }

    async def handle(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookResult:
        """
        Process one webhook delivery.

        An authenticated body that is not a JSON object is acknowledged
        with processed=False.

        Raises:
            SignatureMismatchError: Missing or invalid X-Razorpay-Signature
        """
        if not self.webhook_secret or not verify_webhook(raw_body, signature_header, self.webhook_secret):
            logger.warning("[SECURITY] Rejected webhook with invalid signature")
            raise SignatureMismatchError()

        try:
            event = json.loads(raw_body)
        except ValueError:
            event = None
        if not isinstance(event, dict):
            logger.error("Authenticated webhook with malformed body acknowledged")
            return WebhookResult(event=None, processed=False, message="Malformed webhook body")

        event_type = event.get("event")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("Unhandled webhook event: %s", event_type)
            return WebhookResult(event=event_type, processed=False, message="Event acknowledged")

        try:
            message = await handler(event)
            return WebhookResult(event=event_type, processed=True, message=message)
        except PaymentError as e:
            logger.error("Webhook %s not applied: %s", event_type, e.message)
            return WebhookResult(event=event_type, processed=False, message=e.message)
        except Exception:
            logger.exception("Webhook %s handler error", event_type)
            return WebhookResult(event=event_type, processed=False, message="Internal error")

    @staticmethod
    def _entity(event: Dict[str, Any], name: str) -> Dict[str, Any]:
        entity = ((event.get("payload") or {}).get(name) or {}).get("entity")
        if not isinstance(entity, dict):
            raise ValidationError(f"Webhook payload has no {name} entity")
        return entity

    async def _handle_payment_captured(self, event: Dict[str, Any]) -> str:
        payment = self._entity(event, "payment")
        order_id = payment.get("order_id")
        payment_id = payment.get("id")
        if not order_id or not payment_id:
            raise ValidationError("Captured payment is missing order_id or id")

        _, transitioned = await self.payment_service.capture_from_webhook(
            order_id,
            payment_id,
            webhook_data=event,
            payment_entity=payment
        )
        logger.info("Payment captured via webhook: %s", payment_id)
        return "Payment captured" if transitioned else "Payment already processed"

    async def _handle_payment_failed(self, event: Dict[str, Any]) -> str:
        payment = self._entity(event, "payment")
        order_id = payment.get("order_id")
        if not order_id:
            raise ValidationError("Failed payment is missing order_id")

        _, transitioned = await self.payment_service.ledger.mark_failed(
            order_id,
            payment.get("error_code"),
            payment.get("error_description"),
            webhook_data=event,
            payment_id=payment.get("id")
        )
        logger.info("Payment failed via webhook: %s", payment.get("id"))
        return "Payment marked failed" if transitioned else "Failure ignored"

    async def _handle_refund(self, event: Dict[str, Any]) -> str:
        refund = self._entity(event, "refund")
        await self.payment_service.record_refund_event(refund)
        logger.info("Refund %s recorded via webhook", refund.get("id"))
        return "Refund recorded"
