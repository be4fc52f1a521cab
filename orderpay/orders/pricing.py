"""Cart pricing with Decimal-based money.

Pure computation: no I/O, no mutation of the inputs.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence

from orderpay.errors import ValidationError
from orderpay.services.models import Dish, Merchant, OrderItem
from orderpay.services.money import add, multiply, round_money, subtract, to_decimal

DEFAULT_POINTS_TO_CURRENCY_RATE = Decimal("0.01")


@dataclass(frozen=True)
class CartLine:
    """Single requested line of the cart, as supplied by the request layer."""
    dish_id: str
    quantity: int
    spec_id: Optional[str] = None
    addon_ids: Sequence[str] = ()
    remark: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "CartLine":
        return cls(
            dish_id=str(data["dish_id"]),
            quantity=int(data["quantity"]),
            spec_id=data.get("spec_id"),
            addon_ids=tuple(data.get("addon_ids") or ()),
            remark=data.get("remark"),
        )


@dataclass(frozen=True)
class CartTotals:
    """Priced cart."""
    items: list[OrderItem]
    subtotal: Decimal
    delivery_fee: Decimal
    coupon_amount: Decimal
    points_used: int
    points_discount: Decimal
    discount: Decimal
    total: Decimal
    pay_amount: Decimal


def base_price(dish: Dish, spec_id: Optional[str]) -> Decimal:
    """Specification price when the id matches, otherwise the dish price."""
    if spec_id:
        for spec in dish.specifications:
            if spec.id == spec_id:
                return spec.price
    return dish.price


def addon_total(dish: Dish, addon_ids: Iterable[str]) -> Decimal:
    """Sum of matched add-on prices. Unknown ids contribute zero."""
    prices = {addon.id: addon.price for addon in dish.addons}
    total = Decimal("0")
    for addon_id in addon_ids or ():
        total = add(total, prices.get(addon_id, Decimal("0")))
    return total


def price_line(dish: Dish, line: CartLine) -> OrderItem:
    """Price one line: (base + add-ons) × quantity."""
    if line.quantity < 1:
        raise ValidationError(f"Quantity for dish {line.dish_id} must be at least 1")

    unit_price = base_price(dish, line.spec_id)
    addons = addon_total(dish, line.addon_ids)
    line_total = round_money(multiply(add(unit_price, addons), line.quantity))

    return OrderItem(
        dish_id=dish.id,
        dish_name=dish.name,
        dish_image=dish.images[0] if dish.images else None,
        unit_price=unit_price,
        quantity=line.quantity,
        spec_id=line.spec_id,
        addon_ids=list(line.addon_ids or ()),
        addon_total=addons,
        total_price=line_total,
        remark=line.remark,
    )


def delivery_fee_for(merchant: Merchant, subtotal: Decimal) -> Decimal:
    """Flat fee, waived once the subtotal reaches the free-delivery threshold."""
    threshold = merchant.free_delivery_threshold
    if threshold is not None and subtotal >= threshold:
        return Decimal("0.00")
    return round_money(merchant.delivery_fee)


def compute_discount(
    coupon_amount: Decimal,
    points_used: int,
    points_rate: Decimal = DEFAULT_POINTS_TO_CURRENCY_RATE,
) -> tuple[Decimal, Decimal]:
    """
    Returns:
        (points_discount, total_discount)
    """
    points_discount = round_money(multiply(points_used, points_rate))
    return points_discount, round_money(add(coupon_amount, points_discount))


def compute_pay_amount(subtotal: Decimal, delivery_fee: Decimal, discount: Decimal) -> tuple[Decimal, Decimal]:
    """
    Returns:
        (total, pay_amount) where pay_amount = max(0, total - discount)
    """
    total = round_money(add(subtotal, delivery_fee))
    pay_amount = round_money(max(Decimal("0"), subtract(total, discount)))
    return total, pay_amount


class PricingEngine:
    """Turns a cart snapshot into order totals."""

    def __init__(self, points_to_currency_rate: Decimal = DEFAULT_POINTS_TO_CURRENCY_RATE):
        self.points_to_currency_rate = to_decimal(points_to_currency_rate)

    def price_cart(
        self,
        merchant: Merchant,
        dishes: Mapping[str, Dish],
        lines: Sequence[CartLine],
        coupon_amount: Decimal = Decimal("0"),
        points_used: int = 0,
    ) -> CartTotals:
        """
        Price every line and derive delivery fee, discount and pay amount.

        Args:
            merchant: Merchant selling the dishes
            dishes: Dishes by id; every line's dish must be present
            lines: Requested cart lines
            coupon_amount: Coupon value resolved by the caller
            points_used: Points the user spends on this order

        Raises:
            ValidationError: Empty cart, unknown dish, bad quantity or negative discount input
        """
        if not lines:
            raise ValidationError("Cart is empty")
        if points_used < 0:
            raise ValidationError("points_used must not be negative")
        coupon_amount = round_money(coupon_amount)
        if coupon_amount < 0:
            raise ValidationError("coupon amount must not be negative")

        items = []
        for line in lines:
            dish = dishes.get(line.dish_id)
            if dish is None:
                raise ValidationError(f"Dish {line.dish_id} not found")
            items.append(price_line(dish, line))

        subtotal = round_money(sum((item.total_price for item in items), Decimal("0")))
        delivery_fee = delivery_fee_for(merchant, subtotal)
        points_discount, discount = compute_discount(
            coupon_amount, points_used, self.points_to_currency_rate
        )
        total, pay_amount = compute_pay_amount(subtotal, delivery_fee, discount)

        return CartTotals(
            items=items,
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            coupon_amount=coupon_amount,
            points_used=points_used,
            points_discount=points_discount,
            discount=discount,
            total=total,
            pay_amount=pay_amount,
        )
