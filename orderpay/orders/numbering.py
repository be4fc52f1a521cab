"""Order and refund number factories.

Format: ``YYYYMMDD`` + 4 random digits, refunds prefixed with ``RF``.
Uniqueness is enforced by the orders table; callers regenerate on conflict.
"""
import secrets
from datetime import UTC, datetime
from typing import Optional

REFUND_PREFIX = "RF"


def _random_digits(count: int = 4) -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(count))


def generate_order_no(now: Optional[datetime] = None) -> str:
    """Order number, e.g. ``202410190427``."""
    now = now or datetime.now(UTC)
    return f"{now:%Y%m%d}{_random_digits()}"


def generate_refund_no(now: Optional[datetime] = None) -> str:
    """Refund number, e.g. ``RF202410190031``."""
    now = now or datetime.now(UTC)
    return f"{REFUND_PREFIX}{now:%Y%m%d}{_random_digits()}"
