import json
import os
from itertools import count

os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test_key_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "test_webhook_secret"
os.environ["RAZORPAY_API_URL"] = "https://api.razorpay.test/v1"
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ["SCHEDULER_ENABLED"] = "false"

import httpx
import pytest
import pytest_asyncio
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from marketplace.config import get_settings
from marketplace.database import Database
from marketplace.services.notification.notification_service import NotificationTrigger
from marketplace.services.payment.gateways.factory import PaymentGatewayFactory
from marketplace.services.payment.gateways.razorpay import RazorpayGateway
from marketplace.services.payment.payment_service import PaymentService
from marketplace.services.payment.signature import compute_signature

get_settings.cache_clear()

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"

PLAN_ID = str(ObjectId())
PRODUCT_ID = str(ObjectId())
COACH_ID = str(ObjectId())
BUYER_ID = "buyer_1"


def sign_checkout(order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    return compute_signature(f"{order_id}|{payment_id}".encode("utf-8"), secret)


def sign_webhook(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(body, secret)


class FakeRazorpay:
    """In-memory stand-in for the Razorpay REST API, served through httpx.MockTransport"""

    def __init__(self):
        self.requests = []
        self._ids = count(1)
        self.fail_orders = False
        self.fail_refunds = False
        self.fail_fetch = False
        self.refund_status = "processed"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        self.requests.append((request.method, request.url.path, body))
        path = request.url.path

        if request.method == "POST" and path.endswith("/orders"):
            if self.fail_orders:
                return self._error(400, "Order amount less than minimum amount allowed")
            return httpx.Response(200, json={
                "id": f"order_TEST{next(self._ids)}",
                "entity": "order",
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body["receipt"],
                "status": "created",
                "notes": body.get("notes", {}),
                "created_at": 1700000000
            })

        if request.method == "POST" and path.endswith("/refund"):
            if self.fail_refunds:
                return self._error(400, "The refund amount provided is greater than amount captured")
            payment_id = path.split("/")[-2]
            return httpx.Response(200, json={
                "id": f"rfnd_TEST{next(self._ids)}",
                "entity": "refund",
                "amount": body["amount"],
                "payment_id": payment_id,
                "status": self.refund_status
            })

        if request.method == "GET" and "/payments/" in path:
            if self.fail_fetch:
                return self._error(500, "Server error")
            payment_id = path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={
                "id": payment_id,
                "entity": "payment",
                "status": "captured",
                "method": "upi",
                "vpa": "buyer@upi",
                "amount": 99900,
                "currency": "INR"
            })

        return self._error(404, "The requested URL was not found on the server.")

    @staticmethod
    def _error(status: int, description: str) -> httpx.Response:
        return httpx.Response(status, json={
            "error": {"code": "BAD_REQUEST_ERROR", "description": description}
        })


class ListSink:
    """Notification sink that keeps delivered actions in memory"""

    def __init__(self):
        self.actions = []

    async def deliver(self, action):
        self.actions.append(action)


@pytest.fixture(autouse=True)
def _reset_gateway_cache():
    PaymentGatewayFactory.clear_cache()
    yield
    PaymentGatewayFactory.clear_cache()


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database with the production indexes"""
    client = AsyncMongoMockClient()
    database = client["coach_marketplace_test"]
    await Database.create_indexes(database)
    yield database


@pytest.fixture
def razorpay():
    return FakeRazorpay()


@pytest.fixture
def gateway(razorpay):
    return RazorpayGateway(
        config={
            "key_id": "rzp_test_key",
            "key_secret": KEY_SECRET,
            "api_url": "https://api.razorpay.test/v1"
        },
        transport=httpx.MockTransport(razorpay)
    )


@pytest.fixture
def sink():
    return ListSink()


@pytest.fixture
def notifier(sink):
    return NotificationTrigger(sink)


@pytest_asyncio.fixture
async def catalog_data(db):
    """A 999.00 INR plan whose product splits 20% platform / 80% coach"""
    await db.users.insert_one({
        "_id": ObjectId(COACH_ID),
        "name": "Coach Asha",
        "email": "asha@coach.test",
        "phone": "+919800000001"
    })
    await db.admin_products.insert_one({
        "_id": ObjectId(PRODUCT_ID),
        "name": "Fitness Program",
        "currency": "INR",
        "status": "active",
        "commission_settings": {
            "platform_commission_percentage": 20,
            "coach_commission_percentage": 80
        },
        "total_sales": 0,
        "total_revenue": 0.0
    })
    await db.coach_sellable_plans.insert_one({
        "_id": ObjectId(PLAN_ID),
        "title": "12 Week Transformation",
        "description": "Coached fitness plan",
        "coach_id": ObjectId(COACH_ID),
        "admin_product_id": ObjectId(PRODUCT_ID),
        "price": 999.00,
        "currency": "INR",
        "status": "active",
        "is_public": True,
        "total_sales": 0,
        "total_revenue": 0.0,
        "commission_earned": 0.0,
        "platform_commission_paid": 0.0
    })
    return {"plan_id": PLAN_ID, "product_id": PRODUCT_ID, "coach_id": COACH_ID}


@pytest.fixture
def service(db, gateway, notifier):
    return PaymentService(db, gateway, notifier, key_secret=KEY_SECRET)


@pytest_asyncio.fixture
async def created_order(service, catalog_data):
    """Order created through the service for the seeded plan"""
    return await service.create_plan_order(
        plan_id=PLAN_ID,
        buyer_id=BUYER_ID,
        buyer_email="buyer@test.com",
        buyer_phone="+919800000002",
        buyer_name="Ravi"
    )


@pytest_asyncio.fixture
async def captured_payment(service, created_order):
    """The seeded order, verified and settled"""
    order_id = created_order["order_id"]
    payment_id = "pay_TEST001"
    await service.verify_payment(order_id, payment_id, sign_checkout(order_id, payment_id))
    return {"order_id": order_id, "payment_id": payment_id}
