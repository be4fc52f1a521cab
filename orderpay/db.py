"""
Database Module - Supabase and Redis Clients

Provides lazily created singletons of:
- Async Supabase client for PostgreSQL operations
- Async Upstash Redis client for the callback dedup window
"""

from typing import Optional

from supabase._async.client import AsyncClient
from supabase._async.client import create_client as acreate_client
from upstash_redis.asyncio import Redis as AsyncRedis

from orderpay.config import Settings
from orderpay.logging import get_logger

logger = get_logger(__name__)

# Singleton instances
_async_supabase_client: Optional[AsyncClient] = None
_redis_client: Optional[AsyncRedis] = None


async def get_supabase(settings: Settings) -> AsyncClient:
    """
    Get async Supabase client (singleton).

    Raises:
        ValueError: If SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY are not set
    """
    global _async_supabase_client

    if _async_supabase_client is None:
        if not settings.supabase_url or not settings.supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        _async_supabase_client = await acreate_client(settings.supabase_url, settings.supabase_key)

    return _async_supabase_client


def get_redis(settings: Settings) -> Optional[AsyncRedis]:
    """
    Get async Upstash Redis client (singleton).

    Returns None when UPSTASH_REDIS_REST_URL / UPSTASH_REDIS_REST_TOKEN are
    not set; callers then keep their window in process memory.
    """
    global _redis_client

    if _redis_client is None:
        if not settings.redis_url or not settings.redis_token:
            logger.warning("Upstash Redis not configured, using in-memory dedup window")
            return None
        _redis_client = AsyncRedis(url=settings.redis_url, token=settings.redis_token)

    return _redis_client


class RedisKeys:
    """Redis key prefixes."""

    PAYMENT_NOTIFY = "payment_notify:"  # payment_notify:{order_no}

    @staticmethod
    def payment_notify_key(order_no: str) -> str:
        return f"{RedisKeys.PAYMENT_NOTIFY}{order_no}"
