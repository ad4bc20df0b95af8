import redis.asyncio as aioredis
import os
import logging

logger = logging.getLogger('modelmix.service.redis_client')

redis_clients: dict[str, aioredis.Redis] = {}


def redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://localhost:6379")


def create_redis_client(url: str | None = None) -> aioredis.Redis:
    """Always builds a fresh client, e.g. after the old one's credentials were rejected."""
    url = url or redis_url()
    logger.info(f"Creating Redis client for {url.rsplit('@', 1)[-1]}")
    return aioredis.from_url(url, decode_responses=True)


def get_redis_client() -> aioredis.Redis:
    """Shared client for the session backend and storage."""
    if 'default' not in redis_clients:
        redis_clients['default'] = create_redis_client()
    return redis_clients['default']


async def close_redis_clients() -> None:
    for name, client in list(redis_clients.items()):
        await client.aclose()
        redis_clients.pop(name, None)
