# app/core/redis.py
import redis.asyncio as redis
from app.core.config import settings

# Only the tenant settings cache lives in Redis; short timeouts let callers fall back to the DB
redis_client = redis.Redis.from_url(
    settings.REDIS_URL,
    decode_responses=True,
    socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
    socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
)

async def get_redis_client() -> redis.Redis:
    return redis_client
