import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from marketplace.config import get_settings

logger = logging.getLogger(__name__)


class Database:
    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None

    @classmethod
    async def connect_db(cls):
        """Connect to MongoDB"""
        settings = get_settings()
        cls.client = AsyncIOMotorClient(settings.mongodb_url)
        cls.db = cls.client[settings.database_name]
        logger.info("Connected to MongoDB database %s", settings.database_name)

        await cls.create_indexes(cls.db)

    @classmethod
    async def create_indexes(cls, db: AsyncIOMotorDatabase):
        """Create database indexes"""
        # Payment ledger: one row per provider order, payment id unique once set
        try:
            await db.razorpay_payments.create_index([("order_id", ASCENDING)], unique=True)
            await db.razorpay_payments.create_index(
                [("payment_id", ASCENDING)],
                unique=True,
                sparse=True  # Absent until capture
            )
            await db.razorpay_payments.create_index([("buyer_id", ASCENDING), ("created_at", DESCENDING)])
            await db.razorpay_payments.create_index([("coach_id", ASCENDING)])
            await db.razorpay_payments.create_index([("failed_payment_id", ASCENDING)], sparse=True)
            await db.razorpay_payments.create_index([("status", ASCENDING), ("settlement_status", ASCENDING)])
            await db.razorpay_payments.create_index([("business_type", ASCENDING)])
            logger.info("Created indexes on razorpay_payments")
        except Exception as e:
            logger.warning("Indexes on razorpay_payments may already exist: %s", e)

        # Marketplace read model
        try:
            await db.coach_sellable_plans.create_index([("coach_id", ASCENDING), ("status", ASCENDING)])
            await db.coach_sellable_plans.create_index([("is_public", ASCENDING), ("status", ASCENDING)])
            logger.info("Created indexes on coach_sellable_plans")
        except Exception as e:
            logger.warning("Indexes on coach_sellable_plans may already exist: %s", e)

        # Notification outbox consumed by the email/WhatsApp workers
        try:
            await db.notification_outbox.create_index([("status", ASCENDING), ("created_at", ASCENDING)])
            logger.info("Created indexes on notification_outbox")
        except Exception as e:
            logger.warning("Indexes on notification_outbox may already exist: %s", e)

    @classmethod
    async def close_db(cls):
        """Close MongoDB connection"""
        if cls.client:
            cls.client.close()
            cls.client = None
            cls.db = None
            logger.info("Disconnected from MongoDB")

    @classmethod
    def get_db(cls) -> AsyncIOMotorDatabase:
        """Get database instance"""
        if cls.db is None:
            raise RuntimeError("Database is not connected")
        return cls.db
