"""
Marketplace Read Models
Admin products and the coach plans derived from them.
CRUD lives elsewhere; settlement only reads these and bumps the counters.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from enum import Enum


class PlanStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class CommissionSettings(BaseModel):
    """
    Revenue split configured by the platform owner.
    The two percentages are independent and are not required to sum to 100.
    """
    platform_commission_percentage: float = Field(0.0, ge=0, le=100)
    coach_commission_percentage: float = Field(0.0, ge=0, le=100)


class AdminProduct(BaseModel):
    """Product defined by the admin (collection: admin_products)"""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    name: str
    currency: str = "INR"
    status: str = "active"
    commission_settings: CommissionSettings = Field(default_factory=CommissionSettings)

    # Counters, incremented only by settlement
    total_sales: int = 0
    total_revenue: float = 0.0


class CoachSellablePlan(BaseModel):
    """Priced plan a coach sells (collection: coach_sellable_plans)"""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    title: str
    description: Optional[str] = None
    coach_id: str
    admin_product_id: str
    price: float
    currency: str = "INR"
    status: PlanStatus = PlanStatus.DRAFT
    is_public: bool = False

    # Counters, incremented only by settlement
    total_sales: int = 0
    total_revenue: float = 0.0
    commission_earned: float = 0.0
    platform_commission_paid: float = 0.0

    @property
    def is_purchasable(self) -> bool:
        return self.status == PlanStatus.ACTIVE and self.is_public


class CoachContact(BaseModel):
    """The slice of the coach's user document needed for notifications"""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
