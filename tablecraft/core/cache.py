# tablecraft/core/cache.py
import orjson
from redis import asyncio as aioredis
from redis.asyncio.connection import ConnectionPool
from redis.asyncio.client import Redis
from tablecraft.core.config import settings
import logging
from typing import Any, Optional

# Set up logging
logger = logging.getLogger(__name__)

CACHE_PREFIX = "tablecraft"

# Global Redis connection pool and client
redis_pool: Optional[ConnectionPool] = None
redis_client: Optional[Redis] = None


async def init_redis_pool() -> Redis:
    """Initialize Redis connection pool, or a DummyRedis when disabled/unreachable"""
    global redis_pool, redis_client

    if redis_client is not None:
        return redis_client

    if not settings.ENABLE_REDIS_CACHE:
        logger.info("Redis cache disabled by configuration")
        redis_client = DummyRedis()
        return redis_client

    try:
        redis_pool = aioredis.ConnectionPool.from_url(
            settings.REDIS_CONNECTION_STRING,
            max_connections=20,
            decode_responses=True,
            encoding="utf-8",
            retry_on_timeout=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            socket_keepalive=True,
            health_check_interval=30
        )

        client = Redis(connection_pool=redis_pool)
        await client.ping()
        logger.info("Redis connection established successfully")

        redis_client = client
        return redis_client
    except Exception as e:
        logger.error(f"Failed to initialize Redis connection: {str(e)}")
        if redis_pool is not None:
            try:
                await redis_pool.disconnect()
            except Exception as disconnect_error:
                logger.warning(f"Error releasing Redis pool: {str(disconnect_error)}")
            redis_pool = None
        # Keep working without Redis until the next restart
        redis_client = DummyRedis()
        return redis_client


async def get_redis() -> Redis:
    """Get Redis client instance with connection check"""
    global redis_client

    if redis_client is None:
        return await init_redis_pool()

    try:
        if not isinstance(redis_client, DummyRedis):
            await redis_client.ping()
    except Exception as e:
        logger.warning(f"Redis connection lost, reconnecting: {str(e)}")
        redis_client = None
        return await init_redis_pool()

    return redis_client


async def close_redis() -> None:
    """Release the pool on shutdown"""
    global redis_pool, redis_client

    if redis_client is not None and not isinstance(redis_client, DummyRedis):
        try:
            await redis_client.close()
        except Exception as e:
            logger.warning(f"Error closing Redis client: {str(e)}")
    if redis_pool is not None:
        await redis_pool.disconnect()
    redis_client = None
    redis_pool = None


async def set_cache(key: str, value: Any, expire: int = None) -> bool:
    """Set a cache value serialized with orjson"""
    redis = await get_redis()
    if isinstance(redis, DummyRedis):
        return False

    try:
        cache_key = f"{CACHE_PREFIX}:{key}"

        if expire is None:
            expire = settings.REDIS_TTL

        json_value = orjson.dumps(value).decode('utf-8')
        result = await redis.set(cache_key, json_value, ex=expire)

        if result:
            logger.debug(f"Cached key: {key} with TTL: {expire}s")
            return True
        return False
    except Exception as e:
        logger.error(f"Error setting cache: {str(e)}")
        return False


async def get_cache(key: str) -> Optional[Any]:
    """Get a cached value by key"""
    redis = await get_redis()
    if isinstance(redis, DummyRedis):
        return None

    try:
        data = await redis.get(f"{CACHE_PREFIX}:{key}")

        if data:
            try:
                return orjson.loads(data)
            except orjson.JSONDecodeError as e:
                logger.error(f"Error decoding cached JSON for {key}: {str(e)}")
                return None
        return None
    except Exception as e:
        logger.error(f"Error getting cache: {str(e)}")
        return None


class DummyRedis:
    """Dummy Redis client that does nothing - used when Redis is unavailable"""

    async def ping(self):
        return False

    async def set(self, *args, **kwargs):
        return False

    async def get(self, *args, **kwargs):
        return None

    async def incr(self, *args, **kwargs):
        return None

    async def expire(self, *args, **kwargs):
        return False
