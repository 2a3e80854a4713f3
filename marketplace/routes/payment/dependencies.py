from typing import Optional
from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from marketplace.database import Database
from marketplace.services.notification.notification_service import NotificationTrigger
from marketplace.services.payment.gateways.base import BasePaymentGateway
from marketplace.services.payment.gateways.factory import PaymentGatewayFactory
from marketplace.services.payment.payment_service import PaymentService

# Set by the application lifespan
_notifier: Optional[NotificationTrigger] = None


def set_notifier(notifier: Optional[NotificationTrigger]):
    global _notifier
    _notifier = notifier


async def get_db() -> AsyncIOMotorDatabase:
    """Database dependency"""
    return Database.get_db()


async def get_gateway() -> BasePaymentGateway:
    """Shared Razorpay gateway (raises GatewayError if not configured)"""
    return PaymentGatewayFactory.get_gateway("razorpay")


async def get_notifier() -> Optional[NotificationTrigger]:
    return _notifier


async def get_payment_service(
    db: AsyncIOMotorDatabase = Depends(get_db),
    gateway: BasePaymentGateway = Depends(get_gateway),
    notifier: Optional[NotificationTrigger] = Depends(get_notifier)
) -> PaymentService:
    """Payment service built per request"""
    return PaymentService(db, gateway, notifier)
