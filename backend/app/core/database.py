import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING

from app.core.config import settings

logger = logging.getLogger(__name__)

# Global MongoDB client
_client: AsyncIOMotorClient = None
_database: AsyncIOMotorDatabase = None


async def connect_to_mongo():
    """Connect to MongoDB and make sure the cart indexes exist."""
    global _client, _database
    _client = AsyncIOMotorClient(settings.MONGODB_URI)
    _database = _client[settings.MONGODB_DB_NAME]
    await ensure_indexes(_database)
    logger.info("Connected to MongoDB: %s", settings.MONGODB_DB_NAME)


async def ensure_indexes(db: AsyncIOMotorDatabase):
    """Create the indexes the cart engine relies on."""
    # One personal cart per user
    await db.carts.create_index([("user_id", ASCENDING)], unique=True)
    # Share codes are unique, pointer carts have none
    await db.carts.create_index([("cart_code", ASCENDING)], unique=True, sparse=True)
    await db.carts.create_index([("connected_cart_id", ASCENDING)])
    await db.coupons.create_index([("code", ASCENDING)], unique=True)


async def close_mongo_connection():
    """Close MongoDB connection."""
    global _client
    if _client:
        _client.close()
        logger.info("Closed MongoDB connection")


def get_database() -> AsyncIOMotorDatabase:
    """Get MongoDB database instance."""
    return _database
