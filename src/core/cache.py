"""
Redis utility abstractions for coordination and small cached values
"""

import logging
from typing import Optional, Dict, Any
from uuid import uuid4

import redis.asyncio as redis
import orjson
from redis.exceptions import RedisError, ConnectionError

from .config import get_redis_config, RedisConfig

logger = logging.getLogger(__name__)

# Deletes the lock only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class CacheManager:
    """
    Centralized Redis manager with connection pooling, orjson serialization,
    a token-guarded lock and set-if-absent cooldown keys.
    """

    def __init__(self, config: Optional[RedisConfig] = None, client: Optional[redis.Redis] = None):
        self.config = config or get_redis_config()
        self._pool: Optional[redis.ConnectionPool] = None
        self._client: Optional[redis.Redis] = client
        self._initialized = client is not None

    async def initialize(self) -> None:
        """Initialize Redis connection pool and client"""
        if self._initialized:
            return

        logger.info(f"Initializing Redis connection to {self.config.host}:{self.config.port}")

        try:
            pool_kwargs = {
                "host": self.config.host,
                "port": self.config.port,
                "db": self.config.db,
                "max_connections": self.config.max_connections,
                "socket_timeout": self.config.socket_timeout,
                "socket_connect_timeout": self.config.socket_connect_timeout,
                "decode_responses": self.config.decode_responses,
                "retry_on_timeout": True,
                "retry_on_error": [ConnectionError],
            }

            if self.config.password:
                pool_kwargs["password"] = self.config.password

            self._pool = redis.ConnectionPool(**pool_kwargs)
            self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()
            logger.info("Redis connection established successfully")

            self._initialized = True

        except Exception as e:
            logger.error(f"Failed to initialize Redis: {e}")
            raise

    async def cleanup(self) -> None:
        """Cleanup Redis connections"""
        if self._pool:
            await self._pool.disconnect()
            self._initialized = False
            logger.info("Redis connections closed")

    @property
    def client(self) -> redis.Redis:
        """Get the Redis client instance"""
        if not self._initialized:
            raise RuntimeError("Cache manager not initialized. Call initialize() first.")
        return self._client

    async def health_check(self) -> Dict[str, Any]:
        """Perform Redis health check"""
        try:
            if not self._initialized:
                return {"status": "error", "message": "Redis not initialized"}

            pong = await self._client.ping()
            if not pong:
                return {"status": "unhealthy", "message": "Ping failed"}

            return {"status": "healthy"}

        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            return {
                "status": "unhealthy",
                "error": str(e)
            }

    # Serialization utilities
    def serialize(self, data: Any) -> bytes:
        """Serialize data using orjson"""
        return orjson.dumps(data)

    def deserialize(self, data: Optional[bytes]) -> Any:
        """Deserialize data using orjson"""
        if data is None:
            return None
        return orjson.loads(data)

    # Basic cache operations
    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache with automatic deserialization"""
        try:
            raw_data = await self.client.get(key)
            return self.deserialize(raw_data) if raw_data else None
        except RedisError as e:
            logger.warning(f"Redis get failed for key {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Set value in cache with automatic serialization"""
        try:
            await self.client.setex(key, ttl_seconds, self.serialize(value))
            return True
        except RedisError as e:
            logger.warning(f"Redis set failed for key {key}: {e}")
            return False

    async def set_if_absent(self, key: str, ttl_seconds: int) -> bool:
        """
        Claim ``key`` for ``ttl_seconds``.

        Returns True only for the caller that created the key. Redis errors
        propagate so callers can decide whether to proceed unguarded.
        """
        created = await self.client.set(key, b"1", nx=True, ex=ttl_seconds)
        return bool(created)

    # Locking
    async def acquire_lock(self, name: str, ttl_seconds: int) -> Optional[str]:
        """Take a named lock, returning its token, or None when already held"""
        token = uuid4().hex
        acquired = await self.client.set(f"lock:{name}", token.encode(), nx=True, ex=ttl_seconds)
        return token if acquired else None

    async def release_lock(self, name: str, token: str) -> bool:
        """Release a lock previously taken with ``acquire_lock``"""
        try:
            released = await self.client.eval(_RELEASE_SCRIPT, 1, f"lock:{name}", token.encode())
            return bool(released)
        except RedisError as e:
            logger.warning(f"Redis lock release failed for {name}: {e}")
            return False
