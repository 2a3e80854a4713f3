import pytest

from conftest import BUYER_ID, PLAN_ID, PRODUCT_ID
from marketplace.models.marketplace.plan import AdminProduct, CommissionSettings
from marketplace.models.payment.razorpay_payment import (
    BusinessType,
    BuyerRole,
    PaymentRecord,
    SettlementStatus,
)
from marketplace.services.payment.ledger import PaymentLedger
from marketplace.services.payment.settlement import SettlementEngine, SettlementResult, compute_commission


async def captured_record(ledger, order_id="order_1", payment_id="pay_1", **overrides) -> PaymentRecord:
    values = dict(
        order_id=order_id,
        amount=999.0,
        amount_minor=99900,
        currency="INR",
        business_type=BusinessType.COACH_PLAN_PURCHASE,
        buyer_id=BUYER_ID,
        buyer_role=BuyerRole.CUSTOMER,
        plan_id=PLAN_ID
    )
    values.update(overrides)
    await ledger.create(PaymentRecord(**values))
    record, _ = await ledger.mark_captured(order_id, payment_id, "sig")
    return record


@pytest.fixture
def ledger(db):
    return PaymentLedger(db)


@pytest.fixture
def engine(db, ledger):
    return SettlementEngine(db, ledger)


def test_compute_commission_for_plan_price():
    product = AdminProduct(
        _id="p1",
        name="Program",
        commission_settings=CommissionSettings(platform_commission_percentage=20, coach_commission_percentage=80)
    )
    split = compute_commission(999.00, product)

    assert split.platform_commission == 199.8
    assert split.coach_commission == 799.2
    assert split.commission_amount == 799.2


def test_compute_commission_does_not_require_sum_of_100():
    product = AdminProduct(
        _id="p1",
        name="Program",
        commission_settings=CommissionSettings(platform_commission_percentage=10, coach_commission_percentage=70)
    )
    split = compute_commission(100, product)
    assert (split.platform_commission, split.coach_commission) == (10.0, 70.0)


async def test_coach_plan_settlement_updates_counters(db, ledger, engine, catalog_data):
    record = await captured_record(ledger)

    result = await engine.settle(record)

    assert result.status == SettlementStatus.SETTLED
    assert result.platform_commission == 199.8
    assert result.coach_commission == 799.2

    plan = await db.coach_sellable_plans.find_one({})
    assert plan["total_sales"] == 1
    assert plan["total_revenue"] == pytest.approx(999.0)
    assert plan["commission_earned"] == pytest.approx(799.2)
    assert plan["platform_commission_paid"] == pytest.approx(199.8)

    product = await db.admin_products.find_one({})
    assert product["total_sales"] == 1
    assert product["total_revenue"] == pytest.approx(999.0)

    stored = await ledger.get_by_order_id("order_1")
    assert stored.settlement_status == "settled"
    assert stored.commission_amount == 799.2
    assert stored.platform_commission == 199.8
    assert stored.coach_commission == 799.2
    assert stored.settlement_progress == {"plan_counters": True, "product_counters": True}


async def test_settle_twice_does_not_double_count(db, ledger, engine, catalog_data):
    record = await captured_record(ledger)

    await engine.settle(record)
    second = await engine.settle(record)

    assert second.status == SettlementStatus.SKIPPED
    plan = await db.coach_sellable_plans.find_one({})
    assert plan["total_sales"] == 1


async def test_missing_plan_fails_without_undoing_capture(ledger, engine, catalog_data, caplog):
    record = await captured_record(ledger, plan_id="000000000000000000000000")

    result = await engine.settle(record)

    assert result.status == SettlementStatus.FAILED
    assert "Plan not found" in result.message
    stored = await ledger.get_by_order_id("order_1")
    assert stored.status == "captured"
    assert stored.settlement_status == "failed"
    assert stored.settlement_error == "Plan not found"
    assert "order_1" in caplog.text and "pay_1" in caplog.text


async def test_missing_product_fails(db, ledger, engine, catalog_data):
    await db.admin_products.delete_many({})
    record = await captured_record(ledger)

    result = await engine.settle(record)

    assert result.status == SettlementStatus.FAILED
    assert "Product not found" in result.message


async def test_platform_subscription_is_skipped(ledger, engine):
    record = await captured_record(
        ledger,
        business_type=BusinessType.PLATFORM_SUBSCRIPTION,
        buyer_role=BuyerRole.COACH,
        plan_id=None
    )

    result = await engine.settle(record)

    assert result.status == SettlementStatus.SKIPPED
    stored = await ledger.get_by_order_id("order_1")
    assert stored.settlement_status == "skipped"


async def test_unregistered_business_type_is_skipped(ledger, engine):
    record = await captured_record(ledger, business_type=BusinessType.OTHER, plan_id=None)

    result = await engine.settle(record)

    assert result.status == SettlementStatus.SKIPPED
    assert "No settlement strategy" in result.message


async def test_register_replaces_strategy(ledger, engine):
    calls = []

    class Recording:
        async def settle(self, record):
            calls.append(record.order_id)
            return SettlementResult(status=SettlementStatus.SETTLED, order_id=record.order_id)

    engine.register(BusinessType.MLM_COMMISSION, Recording())
    record = await captured_record(ledger, business_type=BusinessType.MLM_COMMISSION, plan_id=None)

    result = await engine.settle(record)
    assert result.status == SettlementStatus.SETTLED
    assert calls == ["order_1"]


async def test_replay_settles_failed_records(db, ledger, engine, catalog_data):
    await db.admin_products.delete_many({})
    record = await captured_record(ledger)
    first = await engine.settle(record)
    assert first.status == SettlementStatus.FAILED

    # The product is loaded before any counter is touched
    plan = await db.coach_sellable_plans.find_one({})
    assert plan["total_sales"] == 0

    await db.admin_products.insert_one({
        "_id": PRODUCT_ID,
        "name": "Fitness Program",
        "commission_settings": {"platform_commission_percentage": 20, "coach_commission_percentage": 80}
    })

    summary = await engine.replay_unsettled()

    assert summary["processed"] == 1
    assert summary["settled"] == ["order_1"]
    plan = await db.coach_sellable_plans.find_one({})
    assert plan["total_sales"] == 1
    assert (await ledger.get_by_order_id("order_1")).settlement_status == "settled"


async def test_replay_skips_steps_already_applied(db, ledger, engine, catalog_data):
    record = await captured_record(ledger)
    await db.razorpay_payments.update_one(
        {"order_id": "order_1"},
        {"$set": {"settlement_progress": {"plan_counters": True}}}
    )

    summary = await engine.replay_unsettled()

    assert summary["settled"] == ["order_1"]
    plan = await db.coach_sellable_plans.find_one({})
    product = await db.admin_products.find_one({})
    assert plan["total_sales"] == 0
    assert product["total_sales"] == 1
