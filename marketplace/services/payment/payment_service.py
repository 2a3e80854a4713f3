"""
Payment Service
Orchestrates order creation, payment verification, capture processing and refunds
"""
import logging
import time
import uuid
from typing import Optional, Dict, Any, Tuple, List

from motor.motor_asyncio import AsyncIOMotorDatabase

from marketplace.config import get_settings
from marketplace.core.exceptions import (
    GatewayError,
    InvalidStateError,
    NotFoundError,
    SignatureMismatchError,
    ValidationError,
)
from marketplace.models.payment.razorpay_payment import (
    BusinessType,
    BuyerRole,
    CustomerInfo,
    PaymentRecord,
    PaymentRecordStatus,
    RefundEntry,
    SettlementStatus,
)
from marketplace.services.marketplace.catalog import PlanCatalog
from marketplace.services.notification.notification_service import (
    NotificationTrigger,
    PurchaseNotification,
)
from marketplace.services.payment.gateways.base import BasePaymentGateway, GatewayPayment
from marketplace.services.payment.gateways.razorpay import build_receipt_id
from marketplace.services.payment.ledger import PaymentLedger
from marketplace.services.payment.settlement import SettlementEngine, SettlementResult
from marketplace.services.payment.signature import compute_signature, verify_order_payment
from marketplace.utils.money import as_float, from_minor_units, to_minor_units

logger = logging.getLogger(__name__)

DEFAULT_REFUND_REASON = "Customer requested refund"


class PaymentService:
    """
    Service for payment operations.
    Built per request; the gateway it is given is shared and stateless.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        gateway: BasePaymentGateway,
        notifier: Optional[NotificationTrigger] = None,
        settlement_engine: Optional[SettlementEngine] = None,
        key_secret: Optional[str] = None
    ):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.ledger = PaymentLedger(db)
        self.catalog = PlanCatalog(db)
        self.settlement_engine = settlement_engine or SettlementEngine(db, self.ledger)
        self.key_secret = key_secret or get_settings().razorpay_key_secret

    # ------------------------------------------------------------------
    # Order creation
    # ------------------------------------------------------------------

    async def create_plan_order(
        self,
        plan_id: str,
        buyer_id: str,
        buyer_email: Optional[str] = None,
        buyer_phone: Optional[str] = None,
        buyer_name: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a provider order for a coach plan purchase.

        The ledger row is written only after the gateway confirms the
        order, so a rejected or timed-out create leaves nothing behind.
        """
        if not plan_id or not buyer_id:
            raise ValidationError("plan_id and buyer_id are required")

        plan = await self.catalog.get_plan(plan_id)
        if not plan or not plan.is_purchasable:
            raise NotFoundError("Plan not found or not available for purchase")

        amount_minor = to_minor_units(plan.price, plan.currency)
        now_ms = int(time.time() * 1000)

        order = await self.gateway.create_order(
            amount_minor_units=amount_minor,
            currency=plan.currency,
            receipt_id=build_receipt_id("CP", now_ms),
            notes={
                "plan_id": plan.id,
                "coach_id": plan.coach_id,
                "customer_id": buyer_id,
                "business_type": BusinessType.COACH_PLAN_PURCHASE.value,
                "full_receipt": f"coach_plan_{plan.id}_{now_ms}"
            }
        )

        record = PaymentRecord(
            order_id=order.provider_order_id,
            receipt=order.receipt,
            amount=as_float(plan.price),
            amount_minor=amount_minor,
            currency=plan.currency,
            business_type=BusinessType.COACH_PLAN_PURCHASE,
            buyer_id=buyer_id,
            buyer_role=BuyerRole.CUSTOMER,
            customer_info=CustomerInfo(name=buyer_name, email=buyer_email, phone=buyer_phone),
            plan_id=plan.id,
            coach_id=plan.coach_id,
            product_id=plan.admin_product_id,
            product_type="coach_plan",
            product_name=plan.title,
            product_description=plan.description,
            gateway_response=order.raw_response,
            notes={"full_receipt": f"coach_plan_{plan.id}_{now_ms}"}
        )
        await self.ledger.create(record)

        coach = await self.catalog.get_coach(plan.coach_id)
        redirect_url = (
            f"{get_settings().frontend_url}/checkout/payment"
            f"?orderId={order.provider_order_id}&planId={plan.id}"
            f"&amount={order.amount}&currency={order.currency}"
        )

        return {
            "order_id": order.provider_order_id,
            "amount": order.amount,
            "currency": order.currency,
            "gateway_public_key": self.gateway.public_key,
            "redirect_url": redirect_url,
            "plan": {
                "id": plan.id,
                "title": plan.title,
                "price": plan.price,
                "currency": plan.currency,
                "coach": {
                    "name": coach.name if coach else None,
                    "email": coach.email if coach else None
                }
            }
        }

    async def create_subscription_order(
        self,
        coach_id: str,
        subscription_plan: str,
        amount: float,
        billing_cycle: str,
        currency: str = "INR"
    ) -> Dict[str, Any]:
        """Create a provider order for a coach's platform subscription"""
        coach = await self.catalog.get_coach(coach_id)
        if not coach:
            raise NotFoundError("Coach not found")

        amount_minor = to_minor_units(amount, currency)
        now_ms = int(time.time() * 1000)

        order = await self.gateway.create_order(
            amount_minor_units=amount_minor,
            currency=currency,
            receipt_id=build_receipt_id("SUB", now_ms),
            notes={
                "coach_id": coach_id,
                "subscription_plan": subscription_plan,
                "billing_cycle": billing_cycle,
                "business_type": BusinessType.PLATFORM_SUBSCRIPTION.value,
                "full_receipt": f"subscription_{coach_id}_{now_ms}"
            }
        )

        record = PaymentRecord(
            order_id=order.provider_order_id,
            receipt=order.receipt,
            amount=as_float(amount),
            amount_minor=amount_minor,
            currency=currency,
            business_type=BusinessType.PLATFORM_SUBSCRIPTION,
            buyer_id=coach_id,
            buyer_role=BuyerRole.COACH,
            customer_info=CustomerInfo(name=coach.name, email=coach.email, phone=coach.phone),
            coach_id=coach_id,
            product_type="subscription",
            product_name=f"{subscription_plan} Subscription",
            product_description=f"{billing_cycle} subscription for {subscription_plan}",
            gateway_response=order.raw_response,
            notes={"full_receipt": f"subscription_{coach_id}_{now_ms}", "billing_cycle": billing_cycle}
        )
        await self.ledger.create(record)

        return {
            "order_id": order.provider_order_id,
            "amount": order.amount,
            "currency": order.currency,
            "gateway_public_key": self.gateway.public_key,
            "subscription": {
                "plan": subscription_plan,
                "billing_cycle": billing_cycle,
                "amount": as_float(amount),
                "coach": {"name": coach.name, "email": coach.email}
            }
        }

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def verify_payment(
        self,
        order_id: Optional[str],
        payment_id: Optional[str],
        signature: Optional[str]
    ) -> Dict[str, Any]:
        """
        Verify a checkout result and capture the order.

        Calling this again with the same values returns the captured
        record without settling a second time.
        """
        if not verify_order_payment(order_id, payment_id, signature, self.key_secret):
            logger.warning("[SECURITY] Invalid payment signature for order %s", order_id)
            raise SignatureMismatchError()

        record = await self.ledger.require_by_order_id(order_id)

        if record.status in (PaymentRecordStatus.CAPTURED, PaymentRecordStatus.REFUNDED) \
                and record.payment_id == payment_id:
            logger.info("Payment %s already verified", payment_id)
            return self._verification_response(record, already_processed=True)

        details = await self._fetch_payment_details(payment_id)

        record, transitioned = await self.ledger.mark_captured(
            order_id,
            payment_id,
            signature,
            payment_details=details,
            source="verify"
        )

        if transitioned:
            await self.process_capture(record)

        logger.info("Payment verified successfully: %s", payment_id)
        return self._verification_response(record, already_processed=not transitioned)

    async def capture_from_webhook(
        self,
        order_id: str,
        payment_id: str,
        webhook_data: Dict[str, Any],
        payment_entity: Optional[Dict[str, Any]] = None
    ) -> Tuple[PaymentRecord, bool]:
        """
        created -> captured from an authenticated payment.captured event.
        The stored signature is the one checkout hands the client for this
        order/payment pair, so both capture paths leave the same audit trail.
        """
        entity = payment_entity or {}
        details = GatewayPayment(
            payment_id=payment_id,
            order_id=order_id,
            status=entity.get("status"),
            amount=entity.get("amount"),
            currency=entity.get("currency"),
            method=entity.get("method"),
            bank=entity.get("bank"),
            wallet=entity.get("wallet"),
            vpa=entity.get("vpa"),
            raw_response=entity
        )

        record, transitioned = await self.ledger.mark_captured(
            order_id,
            payment_id,
            compute_signature(f"{order_id}|{payment_id}".encode("utf-8"), self.key_secret),
            payment_details=details,
            webhook_data=webhook_data,
            source="webhook"
        )

        if transitioned:
            await self.process_capture(record)

        return record, transitioned

    async def process_capture(self, record: PaymentRecord) -> SettlementResult:
        """
        Post-capture effects: settlement, then the notification handoff.
        Neither can undo the capture.
        """
        result = await self.settlement_engine.settle(record)

        if result.status == SettlementStatus.FAILED:
            logger.error(
                "[SETTLEMENT] Capture kept despite settlement failure: order=%s payment=%s",
                record.order_id, record.payment_id
            )

        if self.notifier and record.business_type == BusinessType.COACH_PLAN_PURCHASE:
            try:
                await self._publish_purchase(record, result)
            except Exception:
                logger.exception("Failed to queue notifications for order %s", record.order_id)

        return result

    async def _publish_purchase(self, record: PaymentRecord, result: SettlementResult):
        plan = result.plan
        if plan is None and record.plan_id:
            plan = await self.catalog.get_plan(record.plan_id)

        coach = await self.catalog.get_coach(record.coach_id) if record.coach_id else None
        info = record.customer_info

        self.notifier.publish(PurchaseNotification(
            payment_id=record.payment_id,
            order_id=record.order_id,
            plan_id=record.plan_id,
            plan_name=(plan.title if plan else None) or record.product_name,
            coach_name=coach.name if coach else None,
            coach_email=coach.email if coach else None,
            coach_phone=coach.phone if coach else None,
            customer_name=info.name,
            customer_email=info.email,
            customer_phone=info.phone,
            amount=record.amount,
            currency=record.currency,
            payment_method=record.payment_method
        ))

    async def _fetch_payment_details(self, payment_id: str) -> Optional[GatewayPayment]:
        """Method metadata is best-effort; a lookup failure never blocks capture"""
        try:
            return await self.gateway.fetch_payment(payment_id)
        except GatewayError as e:
            logger.warning("Could not fetch payment %s details: %s", payment_id, e.message)
            return None

    @staticmethod
    def _verification_response(record: PaymentRecord, already_processed: bool) -> Dict[str, Any]:
        return {
            "payment_id": record.payment_id,
            "order_id": record.order_id,
            "status": record.status,
            "amount": record.amount,
            "currency": record.currency,
            "already_processed": already_processed
        }

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def refund_payment(
        self,
        payment_id: str,
        amount: Optional[float] = None,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Refund all or part of a captured payment.
        A gateway failure leaves the ledger untouched.
        """
        record = await self.ledger.get_by_payment_id(payment_id)
        if not record:
            if await self.ledger.get_by_failed_payment_id(payment_id):
                raise InvalidStateError("Only captured payments can be refunded")
            raise NotFoundError("Payment not found")

        if record.status != PaymentRecordStatus.CAPTURED:
            raise InvalidStateError("Only captured payments can be refunded")

        refundable = record.refundable_minor
        if amount is None:
            refund_minor = refundable
        else:
            refund_minor = to_minor_units(amount, record.currency)

        if refund_minor <= 0:
            raise InvalidStateError("Nothing left to refund on this payment")
        if refund_minor > refundable:
            raise ValidationError(
                f"Refund exceeds refundable balance of {from_minor_units(refundable, record.currency)}",
                field="amount"
            )

        reason = reason or DEFAULT_REFUND_REASON
        gateway_refund = await self.gateway.create_refund(
            payment_id,
            refund_minor,
            notes={"reason": reason, "order_id": record.order_id, "request_id": uuid.uuid4().hex[:12]}
        )

        entry = RefundEntry(
            refund_id=gateway_refund.refund_id,
            amount=float(from_minor_units(gateway_refund.amount, record.currency)),
            amount_minor=gateway_refund.amount,
            status=gateway_refund.status,
            reason=reason
        )
        updated = await self.ledger.append_refund(payment_id, entry)

        logger.info("Refund processed: %s", gateway_refund.refund_id)

        return {
            "refund_id": gateway_refund.refund_id,
            "amount": entry.amount,
            "status": gateway_refund.status,
            "payment_status": updated.status
        }

    async def record_refund_event(self, refund_entity: Dict[str, Any]) -> Optional[PaymentRecord]:
        """Apply a refund reported by the provider (refund.created, refund.processed or refund.failed)"""
        payment_id = refund_entity.get("payment_id")
        refund_id = refund_entity.get("id")
        if not payment_id or not refund_id:
            raise ValidationError("Refund event is missing payment_id or id")

        record = await self.ledger.require_by_payment_id(payment_id)
        amount_minor = int(refund_entity.get("amount") or 0)
        notes = refund_entity.get("notes") or {}

        entry = RefundEntry(
            refund_id=refund_id,
            amount=float(from_minor_units(amount_minor, record.currency)),
            amount_minor=amount_minor,
            status=refund_entity.get("status") or "pending",
            reason=(notes.get("reason") if isinstance(notes, dict) else None) or "Refund processed"
        )
        return await self.ledger.append_refund(payment_id, entry)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_payment(self, payment_id: str) -> PaymentRecord:
        return await self.ledger.require_by_payment_id(payment_id)

    async def list_payments_for_buyer(
        self,
        buyer_id: str,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        business_type: Optional[str] = None
    ) -> Tuple[List[PaymentRecord], Dict[str, Any]]:
        return await self.ledger.list_for_buyer(buyer_id, page, limit, status, business_type)
