"""Order/payment constants and enums."""
from enum import Enum
from typing import Dict, FrozenSet


class OrderStatus(str, Enum):
    """
    Business status lifecycle.

    Flow:
        pending -> confirmed -> preparing -> ready -> delivering -> completed
        pending/confirmed -> cancelled
        completed -> refunded

    - pending: Created, awaiting payment
    - confirmed: Paid (or confirmed by merchant)
    - preparing / ready: Kitchen is working on it, food is committed
    - delivering: Handed to a courier (delivery task assigned)
    - completed: Delivered (final unless refunded)
    - cancelled: Cancelled before preparation (final)
    - refunded: Money returned after completion (final)
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PayStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"
    PARTIAL_REFUNDED = "partial_refunded"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED = "picked"
    DELIVERING = "delivering"
    DELIVERED = "delivered"


class PayMethod(str, Enum):
    WECHAT = "wechat"
    ALIPAY = "alipay"
    BALANCE = "balance"
    POINTS = "points"


class PointType(str, Enum):
    EARN = "earn"
    SPEND = "spend"


class UserLevel(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class TradeState(str, Enum):
    """Gateway trade_state values returned by the query API."""
    SUCCESS = "SUCCESS"
    REFUND = "REFUND"
    NOTPAY = "NOTPAY"
    CLOSED = "CLOSED"
    REVOKED = "REVOKED"
    USERPAYING = "USERPAYING"
    PAYERROR = "PAYERROR"
    UNKNOWN = "UNKNOWN"


# Gateway return_code / result_code success marker
GATEWAY_SUCCESS = "SUCCESS"

# Allowed business status moves (current -> targets)
STATUS_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    OrderStatus.PENDING.value: frozenset({OrderStatus.CONFIRMED.value, OrderStatus.CANCELLED.value}),
    OrderStatus.CONFIRMED.value: frozenset({OrderStatus.PREPARING.value, OrderStatus.CANCELLED.value}),
    OrderStatus.PREPARING.value: frozenset({OrderStatus.READY.value}),
    OrderStatus.READY.value: frozenset({OrderStatus.DELIVERING.value}),
    OrderStatus.DELIVERING.value: frozenset({OrderStatus.COMPLETED.value}),
    OrderStatus.COMPLETED.value: frozenset({OrderStatus.REFUNDED.value}),
    OrderStatus.CANCELLED.value: frozenset(),
    OrderStatus.REFUNDED.value: frozenset(),
}

# Allowed payment sub-status moves
PAY_STATUS_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PayStatus.UNPAID.value: frozenset({PayStatus.PAID.value}),
    PayStatus.PAID.value: frozenset({PayStatus.REFUNDED.value, PayStatus.PARTIAL_REFUNDED.value}),
    PayStatus.REFUNDED.value: frozenset(),
    PayStatus.PARTIAL_REFUNDED.value: frozenset(),
}

# Stock value meaning "unlimited"
UNLIMITED_STOCK = -1

# Level thresholds on lifetime spend, highest first
LEVEL_THRESHOLDS = (
    (5000, UserLevel.PLATINUM),
    (1000, UserLevel.GOLD),
    (500, UserLevel.SILVER),
)

# Ledger reasons
REASON_ORDER_REWARD = "order reward"
REASON_SIGN_IN = "sign-in reward"
REASON_ORDER_DISCOUNT = "order discount"
REASON_ORDER_CANCELLED = "order cancelled, points returned"
