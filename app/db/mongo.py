import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from app.core.config import settings

logger = logging.getLogger(__name__)


class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URL, tz_aware=True)
    mongodb.db = mongodb.client[settings.DATABASE_NAME]

    await create_indexes(mongodb.db)
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)

async def close_mongo_connection():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
    logger.info("Disconnected from MongoDB")

async def create_indexes(db: AsyncIOMotorDatabase):
    """Create database indexes."""
    # Debt indexes
    await db["debts"].create_index([("apartment_id", 1), ("status", 1)])
    await db["debts"].create_index([("apartment_id", 1), ("debtor_id", 1), ("status", 1)])
    await db["debts"].create_index([("apartment_id", 1), ("creditor_id", 1), ("status", 1)])

    # Expense / settlement record indexes
    await db["expenses"].create_index([("apartment_id", 1), ("created_at", -1)])
    await db["expenses"].create_index("linked_debt_id", sparse=True)

    await db["transfers"].create_index("apartment_id")

    # Balance rows are keyed "{apartment}_{user}"; this serves get_balances
    await db["balances"].create_index("apartment_id")

    # Audit log
    await db["actions"].create_index([("apartment_id", 1), ("created_at", -1)])
    await db["actions"].create_index(
        [("apartment_id", 1), ("idempotency_key", 1)],
        unique=True,
        partialFilterExpression={"idempotency_key": {"$type": "string"}}
    )

    await db["apartment_members"].create_index("apartment_id")
