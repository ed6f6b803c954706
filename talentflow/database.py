"""Database connection and utilities."""
import logging
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import Optional
from talentflow.config import settings

logger = logging.getLogger(__name__)


class Database:
    """MongoDB database connection manager."""
    
    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None
    
    @classmethod
    async def connect(cls):
        """Connect to MongoDB."""
        cls.client = AsyncIOMotorClient(settings.mongodb_url)
        cls.db = cls.client[settings.mongodb_db_name]
        logger.info("Connected to MongoDB: %s", settings.mongodb_db_name)
    
    @classmethod
    async def disconnect(cls):
        """Disconnect from MongoDB."""
        if cls.client:
            cls.client.close()
            cls.client = None
            cls.db = None
            logger.info("Disconnected from MongoDB")
    
    @classmethod
    def get_database(cls) -> AsyncIOMotorDatabase:
        """Get database instance."""
        if cls.db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return cls.db
    
    @classmethod
    async def ensure_indexes(cls):
        """Create the unique keys the stores rely on."""
        db = cls.get_database()
        await db.status_history.create_index(
            [("candidate_id", 1), ("sequence", 1)], unique=True
        )
        await db.status_history.create_index([("candidate_id", 1), ("changed_at", 1)])
        await db.scheduled_jobs.create_index([("due_at", 1)])
        await db.scheduled_jobs.create_index([("candidate_id", 1)])
        await db.approval_requests.create_index([("status", 1)])
        await db.failed_invocations.create_index([("failed_at", -1)])
        # Claims carrying expires_at are reaped by MongoDB once it passes
        await db.execution_claims.create_index([("expires_at", 1)], expireAfterSeconds=0)
