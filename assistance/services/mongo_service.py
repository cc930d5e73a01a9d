"""
MongoDB service for connection lifecycle and indexes
"""
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING
import logging

from ..config import settings

logger = logging.getLogger(__name__)


class MongoService:
    """Service for MongoDB connection management"""

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

    async def connect(self, url: Optional[str] = None, db_name: Optional[str] = None):
        """Connect to MongoDB"""
        try:
            self.client = AsyncIOMotorClient(url or settings.mongodb_url, tz_aware=True)
            self.db = self.client[db_name or settings.mongodb_db_name]

            # Test connection
            await self.client.admin.command('ping')
            logger.info("Connected to MongoDB successfully")

            await self.ensure_indexes()

        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    def use_database(self, db: AsyncIOMotorDatabase, client: Optional[AsyncIOMotorClient] = None):
        """Attach an already created database handle"""
        self.db = db
        self.client = client

    async def close(self):
        """Close MongoDB connection"""
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")
        self.client = None
        self.db = None

    async def health_check(self) -> bool:
        """Check MongoDB connection health"""
        if self.client is None:
            return False
        try:
            await self.client.admin.command('ping')
            return True
        except Exception as e:
            logger.warning(f"MongoDB health check failed: {e}")
            return False

    async def ensure_indexes(self, db: Optional[AsyncIOMotorDatabase] = None):
        """Create the indexes the registry and the allocation engine rely on"""
        db = db if db is not None else self.db

        await db.programs.create_index([("status", ASCENDING)])
        await db.programs.create_index([("validity_start", ASCENDING), ("validity_end", ASCENDING)])
        await db.programs.create_index([("name", ASCENDING)])

        # One capacity-holding enrollment per (program, individual); rejected
        # enrollments drop the key and fall out of the sparse index
        await db.recipients.create_index(
            [("active_key", ASCENDING)],
            unique=True,
            sparse=True,
            name="active_key_unique"
        )
        await db.recipients.create_index([("program_id", ASCENDING), ("state", ASCENDING)])
        await db.recipients.create_index([("individual_id", ASCENDING)])
        await db.recipients.create_index([("enrolled_at", ASCENDING)])

        await db.individuals.create_index([("individual_id", ASCENDING)])
        logger.info("MongoDB indexes ensured")


# Global MongoDB service instance
mongo_service = MongoService()
