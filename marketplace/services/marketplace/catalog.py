"""
Plan Catalog
Reads coach plans/admin products and applies the settlement counters
"""
from typing import Optional, Dict, Any

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from marketplace.core.exceptions import NotFoundError
from marketplace.models.marketplace.plan import AdminProduct, CoachSellablePlan, CoachContact


def _id_query(entity_id: str) -> Dict[str, Any]:
    """Documents may be keyed by ObjectId or by a plain string id"""
    if ObjectId.is_valid(entity_id):
        return {"_id": {"$in": [ObjectId(entity_id), entity_id]}}
    return {"_id": entity_id}


def _stringify_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(doc)
    doc["_id"] = str(doc["_id"])
    for key in ("coach_id", "admin_product_id"):
        if key in doc and doc[key] is not None:
            doc[key] = str(doc[key])
    return doc


class PlanCatalog:
    """Plan/product access used by order creation and settlement"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.plans = db.coach_sellable_plans
        self.products = db.admin_products
        self.users = db.users

    async def get_plan(self, plan_id: str) -> Optional[CoachSellablePlan]:
        doc = await self.plans.find_one(_id_query(plan_id))
        return CoachSellablePlan.model_validate(_stringify_id(doc)) if doc else None

    async def require_plan(self, plan_id: str) -> CoachSellablePlan:
        plan = await self.get_plan(plan_id)
        if not plan:
            raise NotFoundError("Plan not found")
        return plan

    async def get_product(self, product_id: str) -> Optional[AdminProduct]:
        doc = await self.products.find_one(_id_query(product_id))
        return AdminProduct.model_validate(_stringify_id(doc)) if doc else None

    async def require_product(self, product_id: str) -> AdminProduct:
        product = await self.get_product(product_id)
        if not product:
            raise NotFoundError("Product not found")
        return product

    async def get_coach(self, coach_id: str) -> Optional[CoachContact]:
        doc = await self.users.find_one(_id_query(coach_id), {"name": 1, "email": 1, "phone": 1})
        return CoachContact.model_validate(_stringify_id(doc)) if doc else None

    async def increment_plan_counters(
        self,
        plan_id: str,
        revenue: float,
        coach_commission: float,
        platform_commission: float
    ):
        """Atomic $inc so concurrent purchases never lose an update"""
        result = await self.plans.update_one(
            _id_query(plan_id),
            {"$inc": {
                "total_sales": 1,
                "total_revenue": revenue,
                "commission_earned": coach_commission,
                "platform_commission_paid": platform_commission
            }}
        )
        if result.matched_count == 0:
            raise NotFoundError("Plan not found")

    async def increment_product_counters(self, product_id: str, revenue: float):
        result = await self.products.update_one(
            _id_query(product_id),
            {"$inc": {"total_sales": 1, "total_revenue": revenue}}
        )
        if result.matched_count == 0:
            raise NotFoundError("Product not found")
