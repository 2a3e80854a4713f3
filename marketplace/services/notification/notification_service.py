"""
Notification Trigger
Post-purchase email/WhatsApp events, handed off through an in-process queue.

Publishing never blocks and never raises: a slow or broken channel must not
delay or fail a capture response. Delivery failures are logged and dropped.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ACTIONS_EXCHANGE = "funnelseye_actions"


class PurchaseNotification(BaseModel):
    """Details of one completed purchase"""
    payment_id: Optional[str] = None
    order_id: str
    plan_id: Optional[str] = None
    plan_name: Optional[str] = None
    coach_name: Optional[str] = None
    coach_email: Optional[str] = None
    coach_phone: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    amount: float
    currency: str
    payment_method: Optional[str] = None
    purchase_date: datetime = Field(default_factory=datetime.utcnow)


@dataclass
class NotificationAction:
    """One message for a delivery worker"""
    action_type: str                # send_email | send_whatsapp_message
    config: Dict[str, Any]
    payload: Dict[str, Any] = field(default_factory=dict)


def build_purchase_actions(notification: PurchaseNotification) -> List[NotificationAction]:
    """Customer + coach confirmations; WhatsApp only where a phone is known"""
    plan_name = notification.plan_name or "your plan"
    customer_name = notification.customer_name or "Customer"
    payload = notification.model_dump(mode="json")
    actions: List[NotificationAction] = []

    if notification.customer_email:
        actions.append(NotificationAction(
            action_type="send_email",
            config={
                "to": notification.customer_email,
                "subject": f"Purchase Confirmation - {plan_name}",
                "template": "purchase_confirmation",
                "data": payload
            },
            payload=payload
        ))

    if notification.coach_email:
        actions.append(NotificationAction(
            action_type="send_email",
            config={
                "to": notification.coach_email,
                "subject": f"New Sale - {plan_name}",
                "template": "coach_sale_notification",
                "data": payload
            },
            payload=payload
        ))

    if notification.customer_phone:
        message = (
            "Purchase Successful!\n\n"
            f"Plan: {plan_name}\n"
            f"Amount: {notification.currency} {notification.amount:.2f}\n"
            f"Coach: {notification.coach_name or 'Your coach'}\n\n"
            "Thank you for your purchase! You will receive access details via email shortly."
        )
        actions.append(NotificationAction(
            action_type="send_whatsapp_message",
            config={"to": notification.customer_phone, "message": message},
            payload=payload
        ))

    if notification.coach_phone:
        message = (
            "New Sale Alert!\n\n"
            f"Plan: {plan_name}\n"
            f"Customer: {customer_name}\n"
            f"Amount: {notification.currency} {notification.amount:.2f}\n"
            f"Payment Method: {notification.payment_method or 'n/a'}\n\n"
            "Congratulations on your new sale!"
        )
        actions.append(NotificationAction(
            action_type="send_whatsapp_message",
            config={"to": notification.coach_phone, "message": message},
            payload=payload
        ))

    return actions


class MongoOutboxSink:
    """Writes actions to notification_outbox for the email/WhatsApp workers"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.outbox = db.notification_outbox

    async def deliver(self, action: NotificationAction):
        await self.outbox.insert_one({
            "exchange": ACTIONS_EXCHANGE,
            "action_type": action.action_type,
            "config": action.config,
            "payload": action.payload,
            "status": "pending",
            "attempts": 0,
            "created_at": datetime.utcnow()
        })


class NotificationTrigger:
    """
    Fire-and-forget publisher backed by an asyncio.Queue and one worker task.
    """

    def __init__(self, sink, max_queue_size: int = 1000):
        self.sink = sink
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def publish(self, notification: PurchaseNotification) -> bool:
        """Queue a notification. Returns False (and logs) if it was dropped."""
        try:
            self.queue.put_nowait(notification)
            return True
        except asyncio.QueueFull:
            logger.error("Notification queue full, dropping notification for order %s", notification.order_id)
            return False

    async def start(self):
        if not self.running:
            self._worker = asyncio.create_task(self._run(), name="notification-worker")
            logger.info("Notification worker started")

    async def stop(self):
        """Deliver what is queued, then stop the worker"""
        await self.drain()
        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
            logger.info("Notification worker stopped")

    async def drain(self):
        """Process every queued notification in the calling task"""
        while True:
            try:
                notification = self.queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                await self._process(notification)
            finally:
                self.queue.task_done()

    async def _run(self):
        while True:
            notification = await self.queue.get()
            try:
                await self._process(notification)
            finally:
                self.queue.task_done()

    async def _process(self, notification: PurchaseNotification):
        for action in build_purchase_actions(notification):
            try:
                await self.sink.deliver(action)
            except Exception:
                logger.exception(
                    "Failed to deliver %s for order %s",
                    action.action_type, notification.order_id
                )
        logger.info("Notifications sent for order %s", notification.order_id)
