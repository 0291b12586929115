"""Redis client module with connection pooling."""

import redis.asyncio as redis

from lms_content.core.config import Settings, settings
from lms_content.core.logging import get_logger

logger = get_logger(__name__)

# Global Redis client instance (connection pool only; health lives on CacheService)
_redis_client: redis.Redis | None = None


def build_redis_client(config: Settings = settings) -> redis.Redis | None:
    """Create a Redis client from settings. Returns None if caching is off or unconfigured."""
    if not config.CACHE_ENABLED:
        return None

    if not config.redis_configured:
        logger.warning("Cache enabled but neither REDIS_URL nor REDIS_HOST set. Caching will be disabled.")
        return None

    common = {
        "decode_responses": True,
        "socket_connect_timeout": config.REDIS_SOCKET_TIMEOUT,
        "socket_timeout": config.REDIS_SOCKET_TIMEOUT,
        "retry_on_timeout": True,
        "health_check_interval": 30,
    }
    if config.REDIS_URL:
        return redis.from_url(config.REDIS_URL, **common)
    return redis.Redis(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        password=config.REDIS_PASSWORD,
        db=config.REDIS_DB,
        **common,
    )


def get_redis_client() -> redis.Redis | None:
    """Get the shared Redis client, creating it on first use."""
    global _redis_client

    if _redis_client is None:
        _redis_client = build_redis_client()
        if _redis_client is not None:
            logger.info("Redis client configured")
    return _redis_client


async def close_redis_client() -> None:
    """Close the shared client on shutdown."""
    global _redis_client

    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except Exception as e:
            logger.warning(f"Redis close failed (non-fatal): {e}")
        _redis_client = None
