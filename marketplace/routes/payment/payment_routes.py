"""
Payment Routes
API endpoints for coach plan checkout, verification, refunds and history
"""
from fastapi import APIRouter, Depends, Query
from typing import Optional

from marketplace.core.scheduler import get_scheduler_status
from marketplace.models.payment.razorpay_payment import (
    CreatePlanOrderRequest,
    CreateSubscriptionOrderRequest,
    PaymentRecord,
    RefundRequest,
    VerifyPaymentRequest,
)
from marketplace.routes.payment.dependencies import get_payment_service
from marketplace.services.payment.payment_service import PaymentService
from marketplace.utils.response import success_response

router = APIRouter(prefix="/payments", tags=["Payments"])


def payment_summary(record: PaymentRecord) -> dict:
    """Client-safe view of a ledger row (no signature, no raw gateway payloads)"""
    return {
        "order_id": record.order_id,
        "payment_id": record.payment_id,
        "amount": record.amount,
        "currency": record.currency,
        "status": record.status,
        "business_type": record.business_type,
        "buyer_id": record.buyer_id,
        "plan_id": record.plan_id,
        "coach_id": record.coach_id,
        "product_name": record.product_name,
        "payment_method": record.payment_method,
        "commission_amount": record.commission_amount,
        "platform_commission": record.platform_commission,
        "coach_commission": record.coach_commission,
        "settlement_status": record.settlement_status,
        "refunds": [refund.model_dump() for refund in record.refunds],
        "created_at": record.created_at,
        "captured_at": record.captured_at,
        "refunded_at": record.refunded_at
    }


@router.post("/coach-plan/create-order")
async def create_coach_plan_order(
    body: CreatePlanOrderRequest,
    payment_service: PaymentService = Depends(get_payment_service)
):
    """
    Create a Razorpay order for a coach plan purchase.
    Price and currency always come from the plan, never from the client.
    """
    order = await payment_service.create_plan_order(
        plan_id=body.plan_id,
        buyer_id=body.buyer_id,
        buyer_email=body.buyer_email,
        buyer_phone=body.buyer_phone,
        buyer_name=body.buyer_name
    )

    return success_response(
        message="Order created successfully",
        data=order,
        status_code=201
    )


@router.post("/subscription/create-order")
async def create_subscription_order(
    body: CreateSubscriptionOrderRequest,
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Create a Razorpay order for a coach's platform subscription"""
    order = await payment_service.create_subscription_order(
        coach_id=body.coach_id,
        subscription_plan=body.subscription_plan,
        amount=body.amount,
        billing_cycle=body.billing_cycle,
        currency=body.currency.value
    )

    return success_response(
        message="Subscription order created successfully",
        data=order,
        status_code=201
    )


@router.post("/verify")
async def verify_payment(
    body: VerifyPaymentRequest,
    payment_service: PaymentService = Depends(get_payment_service)
):
    """
    Verify the checkout signature and capture the order.
    Safe to call more than once for the same payment.
    """
    result = await payment_service.verify_payment(
        order_id=body.order_id,
        payment_id=body.payment_id,
        signature=body.signature
    )

    message = "Payment already verified" if result["already_processed"] else "Payment verified successfully"
    return success_response(message=message, data=result)


@router.get("/user/{buyer_id}")
async def get_user_payments(
    buyer_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None, description="Filter by status"),
    business_type: Optional[str] = Query(None, description="Filter by business type"),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Get a buyer's payment history, newest first"""
    records, pagination = await payment_service.list_payments_for_buyer(
        buyer_id=buyer_id,
        page=page,
        limit=limit,
        status=status,
        business_type=business_type
    )

    return success_response(
        message="Payments retrieved successfully",
        data={
            "payments": [payment_summary(record) for record in records],
            "pagination": pagination
        }
    )


@router.get("/admin/reconcile/status")
async def reconcile_status():
    """Settlement reconciliation job status"""
    return success_response(
        message="Scheduler status retrieved",
        data=get_scheduler_status()
    )


@router.post("/{payment_id}/refund")
async def refund_payment(
    payment_id: str,
    body: Optional[RefundRequest] = None,
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Refund all (no amount) or part of a captured payment"""
    body = body or RefundRequest()
    refund = await payment_service.refund_payment(
        payment_id=payment_id,
        amount=body.amount,
        reason=body.reason
    )

    return success_response(message="Refund processed successfully", data=refund)


@router.get("/{payment_id}")
async def get_payment(
    payment_id: str,
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Get payment details by provider payment id"""
    record = await payment_service.get_payment(payment_id)

    return success_response(
        message="Payment retrieved successfully",
        data={"payment": payment_summary(record)}
    )
