import logging

import redis.asyncio as redis

from backend.app.core.config import settings


logger = logging.getLogger(__name__)

# Shared by idempotency replay and booking throttling across instances.
redis_client: redis.Redis | None = None


async def init_redis() -> None:
    """Connect when REDIS_URL is set; otherwise the in-process TTL store is used."""
    global redis_client
    if not settings.REDIS_URL:
        logger.warning("REDIS_URL not set; idempotency and throttling stay in-process")
        return
    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    logger.info("Redis TTL store enabled")


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
