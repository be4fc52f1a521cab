"""
Order Service - order creation, cancellation and lifecycle moves.

Creation prices the cart, reserves stock, spends the points used as
discount and persists a pending/unpaid order, compensating the earlier
steps if a later one fails. Every later move goes through the pure
OrderStateMachine and a conditional write on the prior state; commands are
applied only by the writer that won.
"""
from datetime import UTC, datetime
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, Optional, Sequence

from orderpay.errors import (
    ERROR_DISH_NOT_FOUND,
    ERROR_MERCHANT_UNAVAILABLE,
    ERROR_ORDER_NOT_FOUND,
    ConcurrentUpdateError,
    NotFoundError,
    ValidationError,
)
from orderpay.logging import get_logger
from orderpay.orders.numbering import generate_order_no
from orderpay.orders.pricing import CartLine, CartTotals, PricingEngine
from orderpay.orders.state_machine import (
    Command,
    EarnPoints,
    OrderStateMachine,
    RecordSpend,
    RestoreStock,
    ReturnPoints,
    Transition,
)
from orderpay.payments.constants import REASON_ORDER_DISCOUNT, REASON_ORDER_REWARD, PayStatus
from orderpay.services.alerts import FailureReporter
from orderpay.services.database import Database
from orderpay.services.domains import PointsLedger, StockLedger
from orderpay.services.models import DeliveryAddress, Order
from orderpay.services.money import round_money

logger = get_logger(__name__)

ACTIVE = "active"
MAX_ORDER_NO_ATTEMPTS = 5
MAX_TRANSITION_ATTEMPTS = 3


async def apply_commands(
    commands: Iterable[Command], stock: StockLedger, points: PointsLedger
) -> list[tuple[Command, Exception]]:
    """
    Run the side effects emitted by a transition, in order.

    Every command is attempted even when an earlier one fails; the failures
    are returned as (command, error) pairs.
    """
    failures: list[tuple[Command, Exception]] = []
    for command in commands:
        try:
            if isinstance(command, RestoreStock):
                await stock.release_many(command.items)
            elif isinstance(command, ReturnPoints):
                await points.return_points(command.user_id, command.points, order_no=command.order_no)
            elif isinstance(command, RecordSpend):
                await points.add_spent(command.user_id, command.amount, order_no=command.order_no)
            elif isinstance(command, EarnPoints):
                await points.earn(
                    command.user_id, command.points, REASON_ORDER_REWARD, order_no=command.order_no
                )
            else:
                raise TypeError(f"Unknown command {command!r}")
        except Exception as e:
            logger.exception("Command %r failed", command)
            failures.append((command, e))
    return failures


class OrderService:
    """Creates orders and drives their lifecycle."""

    def __init__(
        self,
        db: Database,
        pricing: PricingEngine,
        stock: StockLedger,
        points: PointsLedger,
        reporter: Optional[FailureReporter] = None,
    ):
        self.db = db
        self.pricing = pricing
        self.stock = stock
        self.points = points
        self.reporter = reporter or FailureReporter()

    # ==================== PRICING ====================

    async def price_cart(
        self,
        merchant_id: str,
        lines: Sequence[CartLine],
        coupon_amount: Decimal = Decimal("0"),
        points_used: int = 0,
    ) -> CartTotals:
        """
        Price a cart against the live catalog.

        Raises:
            NotFoundError: Merchant missing or not open, or a dish missing/inactive/foreign
            ValidationError: Bad quantities or discount inputs
        """
        merchant = await self.db.merchants.get_by_id(merchant_id)
        if merchant is None or merchant.status != ACTIVE:
            raise NotFoundError(ERROR_MERCHANT_UNAVAILABLE)

        dishes = await self.db.dishes.get_many(line.dish_id for line in lines)
        for line in lines:
            dish = dishes.get(line.dish_id)
            if (
                dish is None
                or dish.status != ACTIVE
                or (dish.merchant_id is not None and dish.merchant_id != merchant_id)
            ):
                raise NotFoundError(f"{ERROR_DISH_NOT_FOUND}: {line.dish_id}")

        totals = self.pricing.price_cart(merchant, dishes, lines, coupon_amount, points_used)
        if totals.subtotal < merchant.min_order_amount:
            raise ValidationError(
                f"Order subtotal {totals.subtotal} is below the minimum of {merchant.min_order_amount}"
            )
        return totals

    # ==================== CREATION ====================

    async def _new_order_no(self) -> str:
        for _ in range(MAX_ORDER_NO_ATTEMPTS):
            order_no = generate_order_no()
            if not await self.db.orders.exists_order_no(order_no):
                return order_no
        raise ConcurrentUpdateError("orders", "order_no")

    async def create_order(
        self,
        user_id: str,
        merchant_id: str,
        lines: Sequence[CartLine],
        delivery_address: Optional[DeliveryAddress] = None,
        coupon_id: Optional[str] = None,
        coupon_amount: Decimal = Decimal("0"),
        points_used: int = 0,
        remark: Optional[str] = None,
    ) -> dict:
        """
        Create a pending/unpaid order.

        Returns:
            {"order_id", "order_no", "pay_amount"}
        """
        totals = await self.price_cart(merchant_id, lines, coupon_amount, points_used)
        order_no = await self._new_order_no()
        reservations = [(item.dish_id, item.quantity) for item in totals.items]

        await self.stock.reserve_many(reservations)
        compensations: list[Callable[[], Awaitable]] = [
            lambda: self.stock.release_many(reservations)
        ]
        try:
            if points_used > 0:
                await self.points.spend(user_id, points_used, REASON_ORDER_DISCOUNT, order_no=order_no)
                compensations.append(
                    lambda: self.points.return_points(user_id, points_used, order_no=order_no)
                )

            now = datetime.now(UTC)
            order = Order(
                order_no=order_no,
                user_id=user_id,
                merchant_id=merchant_id,
                items=totals.items,
                subtotal=totals.subtotal,
                delivery_fee=totals.delivery_fee,
                discount=totals.discount,
                coupon_id=coupon_id,
                coupon_amount=totals.coupon_amount,
                total=totals.total,
                pay_amount=totals.pay_amount,
                points_used=points_used,
                delivery_address=delivery_address,
                contact_name=delivery_address.name if delivery_address else None,
                contact_phone=delivery_address.phone if delivery_address else None,
                remark=remark,
                created_at=now,
                updated_at=now,
            )
            created = await self.db.orders.create(order)
        except Exception:
            logger.warning("Order %s creation failed, compensating", order_no)
            for compensate in reversed(compensations):
                await compensate()
            raise

        logger.info(
            "Created order %s for user %s: pay_amount=%s",
            created.order_no,
            user_id,
            created.pay_amount,
        )
        return {
            "order_id": created.id,
            "order_no": created.order_no,
            "pay_amount": round_money(created.pay_amount),
        }

    # ==================== LIFECYCLE ====================

    async def get_order(self, order_id: str) -> Order:
        order = await self.db.orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError(ERROR_ORDER_NOT_FOUND)
        return order

    async def apply_transition(
        self, order_id: str, make_transition: Callable[[Order], Transition]
    ) -> Order:
        """
        Compute, persist and apply a transition.

        A lost conditional write re-reads the order and recomputes, so an
        order that moved meanwhile raises InvalidStateTransition. Once the
        write lands the move stands; failed side effects are reported.
        """
        for _ in range(MAX_TRANSITION_ATTEMPTS):
            order = await self.get_order(order_id)
            transition = make_transition(order)
            saved = await self.db.orders.save_transition(order, transition.order)
            if saved is not None:
                failures = await apply_commands(transition.commands, self.stock, self.points)
                for command, error in failures:
                    await self.reporter.report(
                        "Order side effect failed",
                        error,
                        metadata={"order_no": saved.order_no, "command": type(command).__name__},
                    )
                return saved
        raise ConcurrentUpdateError("orders", order_id)

    async def cancel_order(self, order_id: str, reason: str) -> Order:
        """Cancel before preparation; restores stock and returns spent points."""
        order = await self.apply_transition(
            order_id, lambda o: OrderStateMachine.cancel(o, reason)
        )
        if PayStatus(order.pay_status) == PayStatus.PAID:
            logger.warning("Cancelled order %s was already paid; refund it separately", order.order_no)
        logger.info("Cancelled order %s: %s", order.order_no, reason)
        return order

    async def start_preparing(self, order_id: str) -> Order:
        return await self.apply_transition(order_id, OrderStateMachine.start_preparing)

    async def mark_ready(self, order_id: str) -> Order:
        return await self.apply_transition(order_id, OrderStateMachine.mark_ready)

    async def start_delivery(self, order_id: str, task_id: str) -> Order:
        if not task_id:
            raise ValidationError("delivery task id is required")
        return await self.apply_transition(
            order_id, lambda o: OrderStateMachine.start_delivery(o, task_id)
        )

    async def complete_delivery(self, order_id: str) -> Order:
        return await self.apply_transition(order_id, OrderStateMachine.complete_delivery)
