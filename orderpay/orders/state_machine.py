"""
Order Lifecycle State Machine

Pure transitions over the Order model. Each transition validates the move,
returns a new Order and the side-effect commands the caller must apply after
persisting it with a conditional update on the prior state.

    transition = OrderStateMachine.cancel(order, "changed my mind")
    saved = await db.orders.save_transition(order, transition.order)
    if saved is not None:
        failures = await apply_commands(transition.commands, stock, points)
"""
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Optional, Union

from orderpay.errors import InvalidStateTransition, refund_amount_error
from orderpay.payments.constants import (
    PAY_STATUS_TRANSITIONS,
    STATUS_TRANSITIONS,
    DeliveryStatus,
    OrderStatus,
    PayMethod,
    PayStatus,
)
from orderpay.services.models import Order
from orderpay.services.money import floor_int, multiply, round_money


# ==================== COMMANDS ====================


@dataclass(frozen=True)
class RestoreStock:
    """Give back stock for every line of a cancelled order (applied once)."""
    order_no: str
    items: tuple[tuple[str, int], ...]  # (dish_id, quantity)


@dataclass(frozen=True)
class ReturnPoints:
    """Credit back points spent as discount on a cancelled order."""
    user_id: str
    points: int
    order_no: str


@dataclass(frozen=True)
class RecordSpend:
    """Add the paid amount to the user's lifetime spend."""
    user_id: str
    amount: Decimal
    order_no: str


@dataclass(frozen=True)
class EarnPoints:
    """Reward points for a settled order."""
    user_id: str
    points: int
    order_no: str


Command = Union[RestoreStock, ReturnPoints, RecordSpend, EarnPoints]


@dataclass(frozen=True)
class Transition:
    """Result of a pure transition: the new order state plus commands."""
    order: Order
    commands: tuple[Command, ...] = field(default_factory=tuple)


# ==================== RULES ====================


def _value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


def can_transition(current, target) -> bool:
    return _value(target) in STATUS_TRANSITIONS.get(_value(current), frozenset())


def check_transition(current, target) -> None:
    """
    Raises:
        InvalidStateTransition: If the business status move is not allowed
    """
    if not can_transition(current, target):
        raise InvalidStateTransition(_value(current), _value(target))


def check_pay_transition(current, target) -> None:
    """
    Raises:
        InvalidStateTransition: If the pay_status move is not allowed
    """
    if _value(target) not in PAY_STATUS_TRANSITIONS.get(_value(current), frozenset()):
        raise InvalidStateTransition(_value(current), _value(target), field="pay_status")


def points_for_amount(amount: Decimal, points_rate: Decimal) -> int:
    """Reward points for a paid amount: floor(amount * rate)."""
    return max(0, floor_int(multiply(amount, points_rate)))


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(UTC)


def settlement_commands(order: Order) -> tuple[Command, ...]:
    """
    Spend and reward for a paid order, derived from the stored order alone.

    Both commands are keyed by order number in the points ledger, so a
    settlement interrupted halfway can be re-applied from the order row.
    """
    commands: list[Command] = [RecordSpend(order.user_id, round_money(order.pay_amount), order.order_no)]
    if order.points_earned > 0:
        commands.append(EarnPoints(order.user_id, order.points_earned, order.order_no))
    return tuple(commands)


class OrderStateMachine:
    """Business status and pay_status transitions. Stateless."""

    @staticmethod
    def _move(order: Order, target: OrderStatus, now: datetime, **changes) -> Order:
        check_transition(order.status, target)
        changes.update(status=target, updated_at=now)
        return order.model_copy(update=changes)

    @classmethod
    def settle_payment(
        cls,
        order: Order,
        transaction_id: Optional[str],
        points_rate: Decimal,
        pay_method: str = PayMethod.WECHAT.value,
        now: Optional[datetime] = None,
    ) -> Transition:
        """
        unpaid -> paid together with pending -> confirmed.

        The reward is computed here and stored on the order in the same write,
        so points_earned is set once by whoever wins the conditional update.
        `settlement_applied` stays False until the commands have run.
        """
        now = _now(now)
        check_pay_transition(order.pay_status, PayStatus.PAID)
        check_transition(order.status, OrderStatus.CONFIRMED)

        points = points_for_amount(order.pay_amount, points_rate)
        settled = order.model_copy(
            update={
                "status": OrderStatus.CONFIRMED,
                "pay_status": PayStatus.PAID,
                "pay_method": pay_method,
                "pay_time": now,
                "transaction_id": transaction_id,
                "points_earned": points,
                "settlement_applied": False,
                "updated_at": now,
            }
        )
        return Transition(settled, settlement_commands(settled))

    @classmethod
    def start_preparing(cls, order: Order, now: Optional[datetime] = None) -> Transition:
        return Transition(cls._move(order, OrderStatus.PREPARING, _now(now)))

    @classmethod
    def mark_ready(cls, order: Order, now: Optional[datetime] = None) -> Transition:
        return Transition(cls._move(order, OrderStatus.READY, _now(now)))

    @classmethod
    def start_delivery(cls, order: Order, task_id: str, now: Optional[datetime] = None) -> Transition:
        """ready -> delivering, recording the courier task."""
        return Transition(
            cls._move(
                order,
                OrderStatus.DELIVERING,
                _now(now),
                delivery_task_id=task_id,
                delivery_status=DeliveryStatus.DELIVERING,
            )
        )

    @classmethod
    def complete_delivery(cls, order: Order, now: Optional[datetime] = None) -> Transition:
        now = _now(now)
        return Transition(
            cls._move(
                order,
                OrderStatus.COMPLETED,
                now,
                actual_delivery_time=now,
                delivery_status=DeliveryStatus.DELIVERED,
            )
        )

    @classmethod
    def cancel(cls, order: Order, reason: str, now: Optional[datetime] = None) -> Transition:
        """
        pending|confirmed -> cancelled.

        Emits one RestoreStock carrying every line, and ReturnPoints when
        points were spent as discount.
        """
        now = _now(now)
        cancelled = cls._move(
            order,
            OrderStatus.CANCELLED,
            now,
            cancel_reason=reason,
            cancel_time=now,
        )
        commands: list[Command] = [
            RestoreStock(
                order_no=order.order_no,
                items=tuple((item.dish_id, item.quantity) for item in order.items),
            )
        ]
        if order.points_used > 0:
            commands.append(ReturnPoints(order.user_id, order.points_used, order.order_no))
        return Transition(cancelled, tuple(commands))

    @classmethod
    def refund(
        cls,
        order: Order,
        amount: Decimal,
        reason: str,
        refund_no: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Transition:
        """
        completed -> refunded, paid -> refunded | partial_refunded.

        Raises:
            ValidationError: If amount is not within (0, pay_amount]
            InvalidStateTransition: If the order is not completed and paid
        """
        cls.validate_refund(order, amount)
        amount = round_money(amount)
        now = _now(now)
        target_pay = PayStatus.REFUNDED if amount == order.pay_amount else PayStatus.PARTIAL_REFUNDED
        refunded = cls._move(
            order,
            OrderStatus.REFUNDED,
            now,
            pay_status=target_pay,
            refund_amount=amount,
            refund_reason=reason,
            refund_time=now,
            refund_no=refund_no or order.refund_no,
        )
        return Transition(refunded)

    @staticmethod
    def validate_refund(order: Order, amount: Decimal) -> None:
        """Checks done before any gateway call is made."""
        amount = round_money(amount)
        if amount <= 0 or amount > order.pay_amount:
            raise refund_amount_error(amount, order.pay_amount)
        check_transition(order.status, OrderStatus.REFUNDED)
        check_pay_transition(order.pay_status, PayStatus.REFUNDED)
