"""
Settlement Engine
Turns a captured payment into commission and revenue bookkeeping.

Runs at most once per capture: callers only invoke it after winning the
created -> captured transition, and the engine additionally claims the
record's settlement before touching any counters. A failed settlement
never un-captures a payment; the record stays visible to reconciliation
(see replay_unsettled) until bookkeeping succeeds.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any, Protocol

from motor.motor_asyncio import AsyncIOMotorDatabase

from marketplace.core.exceptions import PaymentError, SettlementError
from marketplace.models.marketplace.plan import AdminProduct, CoachSellablePlan
from marketplace.models.payment.razorpay_payment import (
    BusinessType,
    PaymentRecord,
    SettlementStatus,
)
from marketplace.services.marketplace.catalog import PlanCatalog
from marketplace.services.payment.ledger import PaymentLedger
from marketplace.utils.money import as_float, percentage_of

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    status: SettlementStatus
    order_id: str
    platform_commission: float = 0.0
    coach_commission: float = 0.0
    message: str = ""
    plan: Optional[CoachSellablePlan] = None
    product: Optional[AdminProduct] = None


@dataclass
class CommissionSplit:
    platform_commission: float
    coach_commission: float

    @property
    def commission_amount(self) -> float:
        # The ledger's commission_amount is the coach's share
        return self.coach_commission


def compute_commission(amount: float, product: AdminProduct) -> CommissionSplit:
    """
    Platform and coach shares of a sale. The two percentages are applied
    independently; whether they sum to 100 is the platform owner's call.
    """
    settings = product.commission_settings
    return CommissionSplit(
        platform_commission=as_float(percentage_of(amount, settings.platform_commission_percentage)),
        coach_commission=as_float(percentage_of(amount, settings.coach_commission_percentage)),
    )


class SettlementStrategy(Protocol):
    async def settle(self, record: PaymentRecord) -> SettlementResult:
        ...


class CoachPlanSettlement:
    """Settlement for coach_plan_purchase: plan/product counters + commission split"""

    STEP_PLAN = "plan_counters"
    STEP_PRODUCT = "product_counters"

    def __init__(self, ledger: PaymentLedger, catalog: PlanCatalog):
        self.ledger = ledger
        self.catalog = catalog

    async def settle(self, record: PaymentRecord) -> SettlementResult:
        if not record.plan_id:
            raise SettlementError("Payment has no plan", order_id=record.order_id, payment_id=record.payment_id)

        plan = await self.catalog.require_plan(record.plan_id)
        product = await self.catalog.require_product(plan.admin_product_id)

        split = compute_commission(record.amount, product)
        progress = record.settlement_progress or {}

        # Counters use $inc; each step is flagged so a replay does not repeat it
        if not progress.get(self.STEP_PLAN):
            await self.catalog.increment_plan_counters(
                plan.id,
                revenue=record.amount,
                coach_commission=split.coach_commission,
                platform_commission=split.platform_commission
            )
            await self.ledger.mark_settlement_step(record.order_id, self.STEP_PLAN)

        if not progress.get(self.STEP_PRODUCT):
            await self.catalog.increment_product_counters(product.id, revenue=record.amount)
            await self.ledger.mark_settlement_step(record.order_id, self.STEP_PRODUCT)

        settled = await self.ledger.record_settlement(
            record.order_id,
            commission_amount=split.commission_amount,
            platform_commission=split.platform_commission,
            coach_commission=split.coach_commission
        )
        if not settled:
            raise SettlementError(
                "Settlement claim lost before commission could be recorded",
                order_id=record.order_id,
                payment_id=record.payment_id
            )

        logger.info(
            "[SETTLEMENT] Coach plan purchase settled: order=%s plan=%s platform=%.2f coach=%.2f",
            record.order_id, plan.id, split.platform_commission, split.coach_commission
        )

        return SettlementResult(
            status=SettlementStatus.SETTLED,
            order_id=record.order_id,
            platform_commission=split.platform_commission,
            coach_commission=split.coach_commission,
            plan=plan,
            product=product
        )


class LoggedNoopSettlement:
    """Placeholder for business types whose bookkeeping is not built yet"""

    def __init__(self, ledger: PaymentLedger, label: str):
        self.ledger = ledger
        self.label = label

    async def settle(self, record: PaymentRecord) -> SettlementResult:
        message = f"No {self.label} bookkeeping configured"
        logger.info("[SETTLEMENT] %s processed with no bookkeeping: payment=%s", self.label, record.payment_id)
        await self.ledger.mark_settlement_skipped(record.order_id, message)
        return SettlementResult(status=SettlementStatus.SKIPPED, order_id=record.order_id, message=message)


class SettlementEngine:
    """
    Dispatches captured payments to a settlement strategy by business type.
    """

    def __init__(self, db: AsyncIOMotorDatabase, ledger: Optional[PaymentLedger] = None):
        self.db = db
        self.ledger = ledger or PaymentLedger(db)
        self.catalog = PlanCatalog(db)
        self._strategies: Dict[str, SettlementStrategy] = {}

        self.register(BusinessType.COACH_PLAN_PURCHASE, CoachPlanSettlement(self.ledger, self.catalog))
        self.register(BusinessType.PLATFORM_SUBSCRIPTION, LoggedNoopSettlement(self.ledger, "platform subscription"))
        self.register(BusinessType.MLM_COMMISSION, LoggedNoopSettlement(self.ledger, "MLM commission"))

    def register(self, business_type: BusinessType, strategy: SettlementStrategy):
        """Add or replace the strategy for a business type"""
        self._strategies[BusinessType(business_type).value] = strategy

    def strategy_for(self, business_type: str) -> Optional[SettlementStrategy]:
        return self._strategies.get(business_type)

    async def settle(self, record: PaymentRecord) -> SettlementResult:
        """
        Settle one captured payment. Never raises: failures are logged with
        the order/payment ids, stored on the record and returned.
        """
        claimed = await self.ledger.claim_settlement(record.order_id)
        if not claimed:
            logger.info("[SETTLEMENT] Order %s already settled or claimed, skipping", record.order_id)
            return SettlementResult(
                status=SettlementStatus.SKIPPED,
                order_id=record.order_id,
                message="Settlement already handled"
            )

        strategy = self.strategy_for(claimed.business_type)
        if strategy is None:
            message = f"No settlement strategy for business type {claimed.business_type}"
            logger.info("[SETTLEMENT] %s (order %s)", message, claimed.order_id)
            await self.ledger.mark_settlement_skipped(claimed.order_id, message)
            return SettlementResult(status=SettlementStatus.SKIPPED, order_id=claimed.order_id, message=message)

        try:
            return await strategy.settle(claimed)
        except PaymentError as e:
            error = e if isinstance(e, SettlementError) else SettlementError(
                e.message, order_id=claimed.order_id, payment_id=claimed.payment_id
            )
        except Exception as e:
            error = SettlementError(str(e), order_id=claimed.order_id, payment_id=claimed.payment_id)

        logger.error(
            "[SETTLEMENT] Settlement failed for order=%s payment=%s: %s",
            claimed.order_id, claimed.payment_id, error.message
        )
        await self.ledger.mark_settlement_failed(claimed.order_id, error.message)
        return SettlementResult(status=SettlementStatus.FAILED, order_id=claimed.order_id, message=error.message)

    async def replay_unsettled(self, limit: int = 100) -> Dict[str, Any]:
        """
        Reconciliation pass: retry settlement for captured records whose
        bookkeeping never completed.
        """
        results: Dict[str, Any] = {"processed": 0, "settled": [], "skipped": [], "failed": []}

        for record in await self.ledger.find_unsettled(limit=limit):
            result = await self.settle(record)
            results["processed"] += 1
            if result.status == SettlementStatus.SETTLED:
                results["settled"].append(record.order_id)
            elif result.status == SettlementStatus.FAILED:
                results["failed"].append({"order_id": record.order_id, "error": result.message})
            else:
                results["skipped"].append(record.order_id)

        if results["processed"]:
            logger.info(
                "[SETTLEMENT] Reconciliation: %d processed, %d settled, %d failed",
                results["processed"], len(results["settled"]), len(results["failed"])
            )
        return results
