"""
MongoDB access: connection manager, collection indexes and a base repository
"""

import logging
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from .config import get_database_config, get_performance_config, DatabaseConfig
from .errors import QueryError, StoreError
from .retry import with_timeout

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Owns the motor client and the users and emergency_requests collections.
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or get_database_config()
        self._client: Optional[AsyncIOMotorClient] = None
        self._database: Optional[AsyncIOMotorDatabase] = None
        self._collections: Dict[str, AsyncIOMotorCollection] = {}
        self._initialized = False

    async def initialize(self) -> None:
        """Connect, verify with a ping, then ensure collections and indexes"""
        if self._initialized:
            return

        logger.info(f"Connecting to MongoDB database {self.config.name}")

        try:
            self._client = AsyncIOMotorClient(
                self.config.uri,
                maxPoolSize=self.config.max_pool_size,
                minPoolSize=self.config.min_pool_size,
                maxIdleTimeMS=self.config.max_idle_time_ms,
                serverSelectionTimeoutMS=self.config.server_selection_timeout_ms,
                tz_aware=True
            )

            await self._client.admin.command('ping')
            logger.info("Database connection established successfully")

            self._database = self._client[self.config.name]

            await self._setup_collections()

            self._initialized = True
            logger.info("Database manager initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    async def _setup_collections(self) -> None:
        """Bind the collections the dispatch service reads and writes"""
        logger.info("Ensuring users and emergency_requests indexes...")

        self._collections = {
            "users": self._database[self.config.users_collection],
            "emergency_requests": self._database[self.config.requests_collection],
        }

        await self._create_indexes()

    async def _create_indexes(self) -> None:
        """Create all necessary database indexes"""
        try:
            users = self._collections["users"]
            # Donor proximity search: equality filters first, range on spatial key last
            await users.create_index([
                ("role", ASCENDING),
                ("blood_type", ASCENDING),
                ("is_available", ASCENDING),
                ("location.spatial_key", ASCENDING)
            ])
            await users.create_index([("phone_number", ASCENDING)])
            await users.create_index([
                ("role", ASCENDING),
                ("is_available", ASCENDING),
                ("last_donation_at", ASCENDING)
            ])

            requests = self._collections["emergency_requests"]
            await requests.create_index([("status", ASCENDING), ("created_at", DESCENDING)])
            await requests.create_index([("matched_donors.phone", ASCENDING), ("created_at", DESCENDING)])
            await requests.create_index([("matched_donors.donor_id", ASCENDING)])
            await requests.create_index([("hospital_id", ASCENDING), ("created_at", DESCENDING)])

            logger.info("Database indexes created successfully")

        except Exception as e:
            logger.error(f"Failed to create database indexes: {e}")
            raise

    async def cleanup(self) -> None:
        """Cleanup database connections"""
        if self._client:
            self._client.close()
            self._initialized = False
            logger.info("Database connections closed")

    def get_collection(self, name: str) -> AsyncIOMotorCollection:
        """Get a collection by name"""
        if not self._initialized:
            raise RuntimeError("Database manager not initialized. Call initialize() first.")

        if name in self._collections:
            return self._collections[name]

        return self._database[name]

    async def health_check(self) -> Dict[str, Any]:
        """Perform database health check"""
        try:
            if not self._initialized:
                return {"status": "error", "message": "Database not initialized"}

            await self._client.admin.command('ping')

            return {
                "status": "healthy",
                "database": self.config.name,
            }

        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "status": "unhealthy",
                "error": str(e)
            }


class BaseRepository:
    """
    Thin wrapper over one motor collection.

    Every call is bounded by the configured store timeout. Driver failures
    surface as QueryError (reads) or StoreError (writes).
    """

    def __init__(self, collection: AsyncIOMotorCollection, timeout: Optional[float] = None):
        self.collection = collection
        self.collection_name = collection.name
        self.timeout = timeout or get_performance_config().store_timeout

    async def find_one(
        self,
        filter_dict: Dict[str, Any],
        projection: Optional[Dict[str, Any]] = None,
        sort: Optional[List[tuple]] = None
    ) -> Optional[Dict[str, Any]]:
        """Find a single document"""
        try:
            return await with_timeout(
                self.collection.find_one(filter_dict, projection, sort=sort),
                self.timeout,
                QueryError,
                f"find_one on {self.collection_name}"
            )
        except PyMongoError as e:
            logger.error(f"Error in find_one for {self.collection_name}: {e}")
            raise QueryError(str(e)) from e

    async def find_many(
        self,
        filter_dict: Dict[str, Any],
        projection: Optional[Dict[str, Any]] = None,
        sort: Optional[List[tuple]] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Find multiple documents"""
        try:
            cursor = self.collection.find(filter_dict, projection)

            if sort:
                cursor = cursor.sort(sort)
            if limit:
                cursor = cursor.limit(limit)

            return await with_timeout(
                cursor.to_list(length=limit),
                self.timeout,
                QueryError,
                f"find on {self.collection_name}"
            )
        except PyMongoError as e:
            logger.error(f"Error in find_many for {self.collection_name}: {e}")
            raise QueryError(str(e)) from e

    async def insert_one(self, document: Dict[str, Any]) -> str:
        """Insert a single document"""
        try:
            now = datetime.now(timezone.utc)
            document.setdefault("created_at", now)
            document.setdefault("updated_at", now)

            result = await with_timeout(
                self.collection.insert_one(document),
                self.timeout,
                StoreError,
                f"insert on {self.collection_name}"
            )
            return str(result.inserted_id)
        except PyMongoError as e:
            logger.error(f"Error in insert_one for {self.collection_name}: {e}")
            raise StoreError(str(e)) from e

    async def update_one(
        self,
        filter_dict: Dict[str, Any],
        update_dict: Dict[str, Any]
    ) -> int:
        """Update a single document, returning the matched count"""
        try:
            result = await with_timeout(
                self.collection.update_one(filter_dict, update_dict),
                self.timeout,
                StoreError,
                f"update on {self.collection_name}"
            )
            return result.matched_count
        except PyMongoError as e:
            logger.error(f"Error in update_one for {self.collection_name}: {e}")
            raise StoreError(str(e)) from e

    async def count_documents(self, filter_dict: Dict[str, Any] = None) -> int:
        """Count documents matching the filter"""
        try:
            return await with_timeout(
                self.collection.count_documents(filter_dict or {}),
                self.timeout,
                QueryError,
                f"count on {self.collection_name}"
            )
        except PyMongoError as e:
            logger.error(f"Error in count_documents for {self.collection_name}: {e}")
            raise QueryError(str(e)) from e
