"""Redis connection used as the workflow checkpoint backend.

Retry configuration follows the other stores: connection-level failures are
retried with exponential backoff, everything else propagates.
"""

import redis.asyncio as redis
from redis.exceptions import BusyLoadingError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from config import get_settings
from utils.logging import get_logger
from utils.retry import retry

logger = get_logger(__name__)

redis_client: redis.Redis | None = None

# Exceptions that should trigger a retry
REDIS_RETRYABLE_EXCEPTIONS = {
    RedisConnectionError,  # Connection lost
    RedisTimeoutError,  # Operation timeout
    BusyLoadingError,  # Redis is loading data
    ConnectionError,
    TimeoutError,
    OSError,
}


@retry(max_attempts=4, backoff_base=0.5, retryable_exceptions=REDIS_RETRYABLE_EXCEPTIONS)
async def _ping(client: redis.Redis) -> None:
    await client.ping()


async def init_redis() -> redis.Redis:
    """Create the Redis client and verify the connection."""
    global redis_client
    settings = get_settings()

    client = redis.from_url(settings.redis_url, decode_responses=True)
    await _ping(client)
    redis_client = client
    logger.info("Redis connection initialized")
    return client


async def close_redis():
    """Close the Redis client."""
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis connection closed")


def get_redis() -> redis.Redis:
    """Return the initialized Redis client."""
    if redis_client is None:
        raise RuntimeError("Redis is not initialized; call init_redis() first")
    return redis_client
