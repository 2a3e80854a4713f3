import json

import pytest

from conftest import WEBHOOK_SECRET, sign_checkout, sign_webhook
from marketplace.core.exceptions import InvalidStateError, SignatureMismatchError
from marketplace.services.payment.webhook_service import WebhookDispatcher


def payment_event(event, order_id, payment_id="pay_HOOK1", **entity):
    payment = {"id": payment_id, "order_id": order_id, "amount": 99900, "currency": "INR", "method": "card"}
    payment.update(entity)
    return json.dumps({"event": event, "payload": {"payment": {"entity": payment}}}).encode("utf-8")


def refund_event(payment_id, refund_id="rfnd_HOOK1", amount=99900, status="processed", event="refund.processed"):
    refund = {"id": refund_id, "payment_id": payment_id, "amount": amount, "status": status}
    return json.dumps({"event": event, "payload": {"refund": {"entity": refund}}}).encode("utf-8")


@pytest.fixture
def dispatcher(service):
    return WebhookDispatcher(service, webhook_secret=WEBHOOK_SECRET)


async def test_payment_captured_event(db, service, dispatcher, created_order):
    order_id = created_order["order_id"]
    body = payment_event("payment.captured", order_id)

    result = await dispatcher.handle(body, sign_webhook(body))

    assert result.processed is True
    record = await service.get_payment("pay_HOOK1")
    assert record.status == "captured"
    assert record.capture_source == "webhook"
    assert record.payment_method == "card"
    assert record.signature == sign_checkout(order_id, "pay_HOOK1")
    assert record.webhook_data["event"] == "payment.captured"
    assert record.settlement_status == "settled"

    plan = await db.coach_sellable_plans.find_one({})
    assert plan["total_sales"] == 1


async def test_webhook_after_verify_does_not_settle_again(db, service, dispatcher, captured_payment):
    body = payment_event("payment.captured", captured_payment["order_id"], captured_payment["payment_id"])

    result = await dispatcher.handle(body, sign_webhook(body))

    assert result.processed is True
    assert result.message == "Payment already processed"
    plan = await db.coach_sellable_plans.find_one({})
    assert plan["total_sales"] == 1


async def test_duplicate_delivery_is_harmless(db, dispatcher, created_order):
    body = payment_event("payment.captured", created_order["order_id"])
    signature = sign_webhook(body)

    await dispatcher.handle(body, signature)
    await dispatcher.handle(body, signature)

    plan = await db.coach_sellable_plans.find_one({})
    assert plan["total_sales"] == 1


async def test_invalid_signature_changes_nothing(db, dispatcher, created_order):
    body = payment_event("payment.captured", created_order["order_id"])

    with pytest.raises(SignatureMismatchError):
        await dispatcher.handle(body, sign_webhook(body, secret="other"))
    with pytest.raises(SignatureMismatchError):
        await dispatcher.handle(body, None)

    doc = await db.razorpay_payments.find_one({"order_id": created_order["order_id"]})
    assert doc["status"] == "created"


async def test_order_secret_is_not_accepted_for_webhooks(dispatcher, created_order):
    body = payment_event("payment.captured", created_order["order_id"])

    with pytest.raises(SignatureMismatchError):
        await dispatcher.handle(body, sign_webhook(body, secret="test_key_secret"))


async def test_malformed_body_is_acknowledged(dispatcher):
    for body in (b"not json", b"[1, 2]"):
        result = await dispatcher.handle(body, sign_webhook(body))

        assert result.processed is False
        assert result.event is None
        assert result.message == "Malformed webhook body"
        assert result.to_dict()["received"] is True


async def test_payment_failed_event(service, dispatcher, created_order):
    order_id = created_order["order_id"]
    body = payment_event(
        "payment.failed",
        order_id,
        error_code="BAD_REQUEST_ERROR",
        error_description="Payment failed due to insufficient funds"
    )

    result = await dispatcher.handle(body, sign_webhook(body))

    assert result.processed is True
    record = await service.ledger.get_by_order_id(order_id)
    assert record.status == "failed"
    assert record.error_code == "BAD_REQUEST_ERROR"
    assert record.failed_at is not None


async def test_capture_of_failed_order_is_acknowledged(service, dispatcher, created_order):
    order_id = created_order["order_id"]
    failed = payment_event("payment.failed", order_id, error_code="X", error_description="declined")
    await dispatcher.handle(failed, sign_webhook(failed))

    captured = payment_event("payment.captured", order_id)
    result = await dispatcher.handle(captured, sign_webhook(captured))

    assert result.processed is False
    record = await service.ledger.get_by_order_id(order_id)
    assert record.status == "failed"


async def test_refund_event_marks_refunded(service, dispatcher, captured_payment):
    body = refund_event(captured_payment["payment_id"])

    result = await dispatcher.handle(body, sign_webhook(body))

    assert result.processed is True
    record = await service.get_payment(captured_payment["payment_id"])
    assert record.status == "refunded"
    assert record.refunds[0].refund_id == "rfnd_HOOK1"
    assert record.refunds[0].amount == 999.0


async def test_refund_echo_of_api_refund_is_ignored(service, dispatcher, captured_payment):
    payment_id = captured_payment["payment_id"]
    refund = await service.refund_payment(payment_id, amount=100)

    body = refund_event(payment_id, refund_id=refund["refund_id"], amount=10000, event="refund.created")
    await dispatcher.handle(body, sign_webhook(body))

    record = await service.get_payment(payment_id)
    assert len(record.refunds) == 1
    assert record.amount_refunded_minor == 10000


async def test_refund_for_unknown_payment_is_acknowledged(dispatcher):
    body = refund_event("pay_UNKNOWN")

    result = await dispatcher.handle(body, sign_webhook(body))

    assert result.processed is False


async def test_unknown_event_is_acknowledged(dispatcher):
    body = json.dumps({"event": "order.paid", "payload": {}}).encode("utf-8")

    result = await dispatcher.handle(body, sign_webhook(body))

    assert result.processed is False
    assert result.event == "order.paid"


async def test_failed_payment_cannot_be_refunded(service, dispatcher, created_order):
    body = payment_event("payment.failed", created_order["order_id"], error_code="X", error_description="declined")
    await dispatcher.handle(body, sign_webhook(body))

    with pytest.raises(InvalidStateError):
        await service.refund_payment("pay_HOOK1")

    record = await service.ledger.require_by_order_id(created_order["order_id"])
    assert record.payment_id is None
    assert record.failed_payment_id == "pay_HOOK1"
    assert record.refunds == []


async def test_refund_failed_event_releases_pending_refund(service, razorpay, dispatcher, captured_payment):
    payment_id = captured_payment["payment_id"]
    razorpay.refund_status = "pending"
    refund = await service.refund_payment(payment_id)

    record = await service.get_payment(payment_id)
    assert record.refundable_minor == 0

    body = refund_event(payment_id, refund_id=refund["refund_id"], status="failed", event="refund.failed")
    result = await dispatcher.handle(body, sign_webhook(body))

    assert result.processed is True
    record = await service.get_payment(payment_id)
    assert record.refunds[0].status == "failed"
    assert record.refundable_minor == 99900
    assert record.status == "captured"

    razorpay.refund_status = "processed"
    retry = await service.refund_payment(payment_id)
    assert retry["payment_status"] == "refunded"
