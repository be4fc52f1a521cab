"""Short-window deduplication of payment callbacks.

Backed by Upstash Redis (`SET NX EX`) so that every serverless instance sees
the same window. Without Redis an in-process TTL map is used. The window
only absorbs near-simultaneous redeliveries; the order's `pay_status` stays
the authoritative guard.
"""
import time
from typing import Any

from orderpay.db import RedisKeys
from orderpay.logging import get_logger

logger = get_logger(__name__)


class CallbackDeduplicator:
    """Claims an order number for a bounded window."""

    def __init__(self, window_seconds: int = 300, redis_client: Any = None) -> None:
        self.window_seconds = window_seconds
        self.redis_client = redis_client
        self._cache: dict[str, float] = {}  # Fallback in-memory window

    @staticmethod
    def _key(order_no: str) -> str:
        return RedisKeys.payment_notify_key(order_no)

    async def claim(self, order_no: str) -> bool:
        """
        Try to claim the order number.

        Returns:
            True if this caller owns the window, False if it was already claimed
        """
        key = self._key(order_no)
        if self.redis_client is not None:
            claimed = await self.redis_client.set(key, "1", ex=self.window_seconds, nx=True)
            return bool(claimed)

        now = time.monotonic()
        self._evict(now)
        if key in self._cache:
            return False
        self._cache[key] = now + self.window_seconds
        return True

    async def release(self, order_no: str) -> None:
        """Drop the claim so that a redelivery can be processed again."""
        key = self._key(order_no)
        if self.redis_client is not None:
            await self.redis_client.delete(key)
            return
        self._cache.pop(key, None)

    def _evict(self, now: float) -> None:
        expired = [key for key, expires_at in self._cache.items() if expires_at <= now]
        for key in expired:
            del self._cache[key]
