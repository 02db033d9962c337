import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from groupsettle.core.config import settings

logger = logging.getLogger(__name__)


class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URL)
    mongodb.db = mongodb.client[settings.DATABASE_NAME]

    # Create indexes
    await create_indexes(mongodb.db)
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)

async def close_mongo_connection():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
    logger.info("Disconnected from MongoDB")

async def create_indexes(db: AsyncIOMotorDatabase):
    """Create database indexes."""
    # Groups
    await db["groups"].create_index("state")
    await db["groups"].create_index("members.member_id")

    # Expense log: keyed by (group_id, expense id), scanned by settled flag
    await db["expenses"].create_index([("group_id", 1), ("_id", 1)], unique=True)
    await db["expenses"].create_index([("group_id", 1), ("settled", 1), ("created_at", 1)])

    # Transfer idempotency keys
    await db["settlement_transfers"].create_index("key", unique=True)
    await db["settlement_transfers"].create_index([("group_id", 1), ("plan_id", 1)])

    # Settlement history
    await db["settlement_runs"].create_index([("group_id", 1), ("started_at", -1)])

def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    return mongodb.db
