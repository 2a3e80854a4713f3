"""
Payment Ledger
Authoritative state machine for every purchase attempt.

Every mutation is a single conditional update against the current state
(compare-and-swap), never a read-then-save of the whole document.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Tuple, List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from marketplace.core.exceptions import NotFoundError, InvalidStateError
from marketplace.models.payment.razorpay_payment import (
    PaymentRecord,
    PaymentRecordStatus,
    RefundEntry,
    SettlementStatus,
)
from marketplace.services.payment.gateways.base import GatewayPayment

logger = logging.getLogger(__name__)

# Statuses in which money has been taken
CAPTURED_STATES = [PaymentRecordStatus.CAPTURED.value, PaymentRecordStatus.REFUNDED.value]

# A settlement claim older than this is considered abandoned
SETTLEMENT_CLAIM_TIMEOUT = timedelta(minutes=15)

MAX_REFUND_CAS_ATTEMPTS = 5

REFUND_PROCESSED = "processed"
REFUND_FAILED = "failed"

# A refund entry in one of these states is never rewritten
REFUND_FINAL_STATES = (REFUND_PROCESSED, REFUND_FAILED)


class PaymentLedger:
    """
    Persistence and lifecycle transitions for PaymentRecord documents
    (collection: razorpay_payments).
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.payments = db.razorpay_payments

    @staticmethod
    def _to_record(doc: Optional[Dict[str, Any]]) -> Optional[PaymentRecord]:
        if not doc:
            return None
        return PaymentRecord.model_validate(doc)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def create(self, record: PaymentRecord) -> PaymentRecord:
        """Persist a new ledger row in the created state"""
        if record.status != PaymentRecordStatus.CREATED:
            raise InvalidStateError("New ledger rows must start in the created state")
        await self.payments.insert_one(record.to_document())
        logger.info("Ledger row created for order %s (%s)", record.order_id, record.business_type)
        return record

    async def get_by_order_id(self, order_id: str) -> Optional[PaymentRecord]:
        return self._to_record(await self.payments.find_one({"order_id": order_id}))

    async def get_by_payment_id(self, payment_id: str) -> Optional[PaymentRecord]:
        return self._to_record(await self.payments.find_one({"payment_id": payment_id}))

    async def get_by_failed_payment_id(self, payment_id: str) -> Optional[PaymentRecord]:
        """Record whose attempt with this payment id was reported failed"""
        return self._to_record(await self.payments.find_one({"failed_payment_id": payment_id}))

    async def require_by_order_id(self, order_id: str) -> PaymentRecord:
        record = await self.get_by_order_id(order_id)
        if not record:
            raise NotFoundError("Payment record not found")
        return record

    async def require_by_payment_id(self, payment_id: str) -> PaymentRecord:
        record = await self.get_by_payment_id(payment_id)
        if not record:
            raise NotFoundError("Payment not found")
        return record

    async def list_for_buyer(
        self,
        buyer_id: str,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        business_type: Optional[str] = None
    ) -> Tuple[List[PaymentRecord], Dict[str, Any]]:
        """Get a buyer's payment history, newest first"""
        query: Dict[str, Any] = {"buyer_id": buyer_id}
        if status:
            query["status"] = status
        if business_type:
            query["business_type"] = business_type

        skip = (page - 1) * limit

        total = await self.payments.count_documents(query)
        cursor = self.payments.find(query).sort("created_at", -1).skip(skip).limit(limit)
        docs = await cursor.to_list(length=limit)

        pagination = {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
            "has_next_page": skip + len(docs) < total,
            "has_prev_page": page > 1
        }

        return [self._to_record(doc) for doc in docs], pagination

    # ------------------------------------------------------------------
    # created -> captured | failed
    # ------------------------------------------------------------------

    async def mark_captured(
        self,
        order_id: str,
        payment_id: str,
        signature: str,
        payment_details: Optional[GatewayPayment] = None,
        webhook_data: Optional[Dict[str, Any]] = None,
        source: str = "verify"
    ) -> Tuple[PaymentRecord, bool]:
        """
        created -> captured.

        Returns:
            (record, transitioned). transitioned is False when another
            caller already captured this order with the same payment id;
            only the caller that transitioned may run settlement.

        Raises:
            NotFoundError: No ledger row for order_id
            InvalidStateError: Order failed, or captured by a different payment
        """
        now = datetime.utcnow()
        update_set: Dict[str, Any] = {
            "status": PaymentRecordStatus.CAPTURED.value,
            "payment_id": payment_id,
            "signature": signature,
            "capture_source": source,
            "captured_at": now,
            "updated_at": now
        }

        if payment_details:
            update_set.update({
                "payment_method": payment_details.method,
                "bank": payment_details.bank,
                "wallet": payment_details.wallet,
                "vpa": payment_details.vpa,
                "gateway_response": payment_details.raw_response
            })

        if webhook_data is not None:
            update_set["webhook_data"] = webhook_data

        try:
            doc = await self.payments.find_one_and_update(
                {"order_id": order_id, "status": PaymentRecordStatus.CREATED.value},
                {"$set": update_set},
                return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            logger.error("Payment %s is already recorded against another order (order %s)", payment_id, order_id)
            raise InvalidStateError("Payment already recorded against another order")

        if doc:
            logger.info("Order %s captured by payment %s via %s", order_id, payment_id, source)
            return self._to_record(doc), True

        existing = await self.require_by_order_id(order_id)

        if existing.status in CAPTURED_STATES:
            if existing.payment_id != payment_id:
                logger.error(
                    "Order %s already captured by %s, got second payment %s",
                    order_id, existing.payment_id, payment_id
                )
                raise InvalidStateError("Order already captured by a different payment")
            logger.info("Order %s already captured, skipping", order_id)
            return existing, False

        logger.error(
            "Capture of payment %s received for %s order %s; needs manual reconciliation",
            payment_id, existing.status, order_id
        )
        raise InvalidStateError(f"Cannot capture a {existing.status} payment")

    async def mark_failed(
        self,
        order_id: str,
        error_code: Optional[str],
        error_description: Optional[str],
        webhook_data: Optional[Dict[str, Any]] = None,
        payment_id: Optional[str] = None
    ) -> Tuple[PaymentRecord, bool]:
        """
        created -> failed. A failure report for an order that is no longer
        in the created state is ignored. payment_id stays unset; the failed
        attempt's id is kept in failed_payment_id.
        """
        now = datetime.utcnow()
        update_set: Dict[str, Any] = {
            "status": PaymentRecordStatus.FAILED.value,
            "error_code": error_code,
            "error_description": error_description,
            "failed_at": now,
            "updated_at": now
        }
        if payment_id:
            update_set["failed_payment_id"] = payment_id
        if webhook_data is not None:
            update_set["webhook_data"] = webhook_data

        doc = await self.payments.find_one_and_update(
            {"order_id": order_id, "status": PaymentRecordStatus.CREATED.value},
            {"$set": update_set},
            return_document=ReturnDocument.AFTER
        )

        if doc:
            logger.info("Order %s marked failed (%s)", order_id, error_code)
            return self._to_record(doc), True

        existing = await self.require_by_order_id(order_id)
        logger.info("Ignoring failure for order %s in state %s", order_id, existing.status)
        return existing, False

    # ------------------------------------------------------------------
    # Settlement bookkeeping
    # ------------------------------------------------------------------

    async def claim_settlement(self, order_id: str) -> Optional[PaymentRecord]:
        """
        Atomically take ownership of a record's settlement.
        Returns None when the record is settled, skipped or claimed by
        another worker.
        """
        now = datetime.utcnow()
        doc = await self.payments.find_one_and_update(
            {
                "order_id": order_id,
                "status": {"$in": CAPTURED_STATES},
                "$or": [
                    {"settlement_status": {"$in": [SettlementStatus.PENDING.value, SettlementStatus.FAILED.value]}},
                    {
                        "settlement_status": SettlementStatus.IN_PROGRESS.value,
                        "settlement_claimed_at": {"$lt": now - SETTLEMENT_CLAIM_TIMEOUT}
                    }
                ]
            },
            {"$set": {
                "settlement_status": SettlementStatus.IN_PROGRESS.value,
                "settlement_claimed_at": now,
                "updated_at": now
            }},
            return_document=ReturnDocument.AFTER
        )
        return self._to_record(doc)

    async def mark_settlement_step(self, order_id: str, step: str):
        """Record that one counter update has been applied"""
        await self.payments.update_one(
            {"order_id": order_id, "settlement_status": SettlementStatus.IN_PROGRESS.value},
            {"$set": {f"settlement_progress.{step}": True, "updated_at": datetime.utcnow()}}
        )

    async def record_settlement(
        self,
        order_id: str,
        commission_amount: float,
        platform_commission: float,
        coach_commission: float
    ) -> Optional[PaymentRecord]:
        """Write the commission split once and close the settlement"""
        now = datetime.utcnow()
        doc = await self.payments.find_one_and_update(
            {"order_id": order_id, "settlement_status": SettlementStatus.IN_PROGRESS.value},
            {"$set": {
                "commission_amount": commission_amount,
                "platform_commission": platform_commission,
                "coach_commission": coach_commission,
                "settlement_status": SettlementStatus.SETTLED.value,
                "settlement_error": None,
                "settled_at": now,
                "updated_at": now
            }},
            return_document=ReturnDocument.AFTER
        )
        return self._to_record(doc)

    async def mark_settlement_failed(self, order_id: str, reason: str):
        await self.payments.update_one(
            {"order_id": order_id, "settlement_status": SettlementStatus.IN_PROGRESS.value},
            {"$set": {
                "settlement_status": SettlementStatus.FAILED.value,
                "settlement_error": reason,
                "updated_at": datetime.utcnow()
            }}
        )

    async def mark_settlement_skipped(self, order_id: str, reason: str):
        await self.payments.update_one(
            {"order_id": order_id, "settlement_status": SettlementStatus.IN_PROGRESS.value},
            {"$set": {
                "settlement_status": SettlementStatus.SKIPPED.value,
                "settlement_error": reason,
                "updated_at": datetime.utcnow()
            }}
        )

    async def find_unsettled(
        self,
        limit: int = 100,
        business_types: Optional[List[str]] = None
    ) -> List[PaymentRecord]:
        """Captured records whose settlement never completed"""
        stale_before = datetime.utcnow() - SETTLEMENT_CLAIM_TIMEOUT
        query: Dict[str, Any] = {
            "status": {"$in": CAPTURED_STATES},
            "$or": [
                {"settlement_status": {"$in": [SettlementStatus.PENDING.value, SettlementStatus.FAILED.value]}},
                {
                    "settlement_status": SettlementStatus.IN_PROGRESS.value,
                    "settlement_claimed_at": {"$lt": stale_before}
                }
            ]
        }
        if business_types:
            query["business_type"] = {"$in": business_types}

        cursor = self.payments.find(query).sort("captured_at", 1).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [self._to_record(doc) for doc in docs]

    # ------------------------------------------------------------------
    # captured -> refunded
    # ------------------------------------------------------------------

    async def append_refund(self, payment_id: str, entry: RefundEntry) -> PaymentRecord:
        """
        Record a refund against a captured payment.

        The write is conditional on the refund list and refunded total the
        caller observed, so concurrent refunds on one payment serialize.
        The record flips to refunded once processed refunds cover the
        captured amount. A refund id already on the record only moves out of
        pending (to processed or failed); a failed refund releases its
        reserved amount.

        Raises:
            NotFoundError: No ledger row for payment_id
            InvalidStateError: Record not captured, or persistent contention
        """
        for _ in range(MAX_REFUND_CAS_ATTEMPTS):
            record = await self.require_by_payment_id(payment_id)

            existing = next((r for r in record.refunds if r.refund_id == entry.refund_id), None)
            if existing and (existing.status in REFUND_FINAL_STATES or entry.status == existing.status):
                logger.info("Refund %s already recorded on payment %s", entry.refund_id, payment_id)
                return record

            if record.status != PaymentRecordStatus.CAPTURED:
                raise InvalidStateError(f"Cannot refund a {record.status} payment")

            observed_total = record.amount_refunded_minor
            new_total = observed_total
            if entry.status == REFUND_PROCESSED:
                new_total += entry.amount_minor

            now = datetime.utcnow()
            update_set: Dict[str, Any] = {
                "amount_refunded_minor": new_total,
                "updated_at": now
            }
            if new_total >= record.amount_minor:
                update_set["status"] = PaymentRecordStatus.REFUNDED.value
                update_set["refunded_at"] = now

            refunds_filter: Dict[str, Any] = {"$size": len(record.refunds)}
            if existing:
                refunds = [
                    entry.model_dump() if r.refund_id == entry.refund_id else r.model_dump()
                    for r in record.refunds
                ]
                update_set["refunds"] = refunds
                refunds_filter["$elemMatch"] = {"refund_id": entry.refund_id, "status": existing.status}
                update: Dict[str, Any] = {"$set": update_set}
            else:
                update = {"$push": {"refunds": entry.model_dump()}, "$set": update_set}

            doc = await self.payments.find_one_and_update(
                {
                    "payment_id": payment_id,
                    "status": PaymentRecordStatus.CAPTURED.value,
                    "amount_refunded_minor": observed_total,
                    "refunds": refunds_filter
                },
                update,
                return_document=ReturnDocument.AFTER
            )

            if doc:
                updated = self._to_record(doc)
                logger.info(
                    "Refund %s (%s) recorded on payment %s, status now %s",
                    entry.refund_id, entry.status, payment_id, updated.status
                )
                return updated

            logger.info("Refund write on payment %s lost a race, retrying", payment_id)

        raise InvalidStateError("Payment is being updated concurrently, please retry")
