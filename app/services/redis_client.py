# app/services/redis_client.py
"""Connection helpers for the optional Redis backend.
The store and quota repository receive the ``Redis`` instance built here.
"""
import structlog
from redis.asyncio import Redis

from app.core.config import Settings

logger = structlog.get_logger(__name__)


async def connect_redis(config: Settings) -> Redis:
    """Open and verify a Redis connection. Fails loudly; there is no silent fallback."""
    if not config.REDIS_URL:
        raise ValueError("REDIS_URL is not set in the environment")
    client = Redis.from_url(config.REDIS_URL, decode_responses=True)
    try:
        await client.ping()
    except Exception:
        await client.aclose()
        logger.error("redis_connect_failed")
        raise
    logger.info("redis_connected")
    return client
