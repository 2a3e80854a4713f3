"""
Razorpay Payment Models
Ledger entry for every order/payment attempt and its lifecycle
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum


class PaymentRecordStatus(str, Enum):
    """Ledger lifecycle: created -> captured | failed, captured -> refunded"""
    CREATED = "created"
    CAPTURED = "captured"
    FAILED = "failed"
    REFUNDED = "refunded"


class BusinessType(str, Enum):
    """Selects the settlement branch; fixed at order creation"""
    COACH_PLAN_PURCHASE = "coach_plan_purchase"
    PLATFORM_SUBSCRIPTION = "platform_subscription"
    MLM_COMMISSION = "mlm_commission"
    COACH_PAYOUT = "coach_payout"
    REFUND = "refund"
    OTHER = "other"


class BuyerRole(str, Enum):
    COACH = "coach"
    CUSTOMER = "customer"
    ADMIN = "admin"
    SYSTEM = "system"


class Currency(str, Enum):
    INR = "INR"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"


class SettlementStatus(str, Enum):
    """Bookkeeping progress, independent of the capture status"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SETTLED = "settled"
    SKIPPED = "skipped"
    FAILED = "failed"


class RefundEntry(BaseModel):
    """One refund against a captured payment (append-only)"""
    refund_id: str
    amount: float               # Major units
    amount_minor: int           # Gateway minor units
    status: str                 # Gateway refund status: pending, processed, failed
    reason: str = "Customer requested refund"
    created_at: datetime = Field(default_factory=datetime.utcnow)


class CustomerInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class PaymentRecord(BaseModel):
    """Payment ledger entry in database (collection: razorpay_payments)"""
    model_config = ConfigDict(use_enum_values=True)

    order_id: str                       # Provider order id, unique
    payment_id: Optional[str] = None    # Set once, on capture
    failed_payment_id: Optional[str] = None  # Attempt reported by payment.failed
    signature: Optional[str] = None
    capture_source: Optional[str] = None  # verify | webhook
    receipt: Optional[str] = None

    # Amount info
    amount: float                       # Major units, in the plan's currency
    amount_minor: int                   # What the gateway was asked to collect
    currency: Currency = Currency.INR

    status: PaymentRecordStatus = PaymentRecordStatus.CREATED
    business_type: BusinessType

    # Buyer
    buyer_id: str
    buyer_role: BuyerRole
    customer_info: CustomerInfo = Field(default_factory=CustomerInfo)

    # Product/plan
    plan_id: Optional[str] = None
    coach_id: Optional[str] = None
    product_id: Optional[str] = None
    product_type: Optional[str] = None
    product_name: Optional[str] = None
    product_description: Optional[str] = None

    # Commission (written once, by settlement)
    commission_amount: float = 0.0
    platform_commission: float = 0.0
    coach_commission: float = 0.0
    settlement_status: SettlementStatus = SettlementStatus.PENDING
    settlement_progress: Dict[str, bool] = Field(default_factory=dict)
    settlement_error: Optional[str] = None
    settled_at: Optional[datetime] = None

    # Payment method details from the gateway
    payment_method: Optional[str] = None
    bank: Optional[str] = None
    wallet: Optional[str] = None
    vpa: Optional[str] = None

    gateway_response: Dict[str, Any] = Field(default_factory=dict)
    webhook_data: Optional[Dict[str, Any]] = None
    notes: Dict[str, Any] = Field(default_factory=dict)

    # Refunds
    refunds: List[RefundEntry] = Field(default_factory=list)
    amount_refunded_minor: int = 0

    # Failure info
    error_code: Optional[str] = None
    error_description: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    captured_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    settlement_claimed_at: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        """
        Mongo document for insertion. Unset optional fields are left out
        so the sparse unique index on payment_id ignores uncaptured rows.
        """
        return self.model_dump(mode="python", exclude_none=True)

    @property
    def reserved_refund_minor(self) -> int:
        """Refunded or still in flight at the gateway"""
        return sum(r.amount_minor for r in self.refunds if r.status != "failed")

    @property
    def refundable_minor(self) -> int:
        return max(self.amount_minor - max(self.reserved_refund_minor, self.amount_refunded_minor), 0)


class CreatePlanOrderRequest(BaseModel):
    """Request to create a coach plan purchase order"""
    plan_id: str = Field(..., min_length=1)
    buyer_id: str = Field(..., min_length=1)
    buyer_email: Optional[str] = None
    buyer_phone: Optional[str] = None
    buyer_name: Optional[str] = None


class CreateSubscriptionOrderRequest(BaseModel):
    """Request to create a platform subscription order"""
    coach_id: str = Field(..., min_length=1)
    subscription_plan: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    billing_cycle: str = Field(..., min_length=1)
    currency: Currency = Currency.INR


class VerifyPaymentRequest(BaseModel):
    """Client-returned checkout result"""
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None


class RefundRequest(BaseModel):
    amount: Optional[float] = Field(None, gt=0)
    reason: Optional[str] = None
