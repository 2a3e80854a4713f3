"""
Payment Webhook Routes
Endpoint for Razorpay webhooks
SECURITY: The signature is checked against the raw body before anything is parsed
"""
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from marketplace.routes.payment.dependencies import get_payment_service
from marketplace.services.payment.payment_service import PaymentService
from marketplace.services.payment.webhook_service import WebhookDispatcher
from marketplace.utils.response import success_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payment Webhooks"])


@router.post("/webhook")
async def handle_razorpay_webhook(
    request: Request,
    payment_service: PaymentService = Depends(get_payment_service)
):
    """
    Handle a Razorpay webhook.

    SECURITY:
    - Verifies X-Razorpay-Signature over the exact bytes received (400 if invalid)
    - Processes idempotently (duplicate deliveries are safe)
    - Returns 200 once authenticated, even if processing failed, so the
      provider does not retry
    """
    raw_body = await request.body()
    signature = request.headers.get("x-razorpay-signature")

    dispatcher = WebhookDispatcher(payment_service)
    result = await dispatcher.handle(raw_body, signature)

    if not result.processed:
        logger.info("Webhook %s acknowledged without changes: %s", result.event, result.message)

    return success_response(message="Webhook received", data=result.to_dict())


# Health check for webhook endpoint
@router.get("/webhook/health")
async def webhook_health():
    """
    Health check for webhook endpoint.
    Can be used to verify webhook URL is accessible.
    """
    return JSONResponse(
        status_code=200,
        content={"status": "ok", "message": "Webhook endpoint healthy"}
    )
