"""Database Models - Pydantic models for all entities."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from orderpay.payments.constants import (
    DeliveryStatus,
    OrderStatus,
    PayStatus,
    PointType,
    UNLIMITED_STOCK,
    UserLevel,
)
from orderpay.services.money import round_money as _round_money
from orderpay.services.money import to_decimal as _to_decimal


class DishSpecification(BaseModel):
    """Selectable size/variant with its own price."""
    id: str
    name: str = ""
    price: Decimal

    @field_validator("price", mode="before")
    @classmethod
    def convert_price_to_decimal(cls, v):
        return _to_decimal(v)


class DishAddon(BaseModel):
    """Optional extra charged on top of the base price."""
    id: str
    name: str = ""
    price: Decimal

    @field_validator("price", mode="before")
    @classmethod
    def convert_price_to_decimal(cls, v):
        return _to_decimal(v)


class Dish(BaseModel):
    """Dish model (catalog entry owned by a merchant)."""
    model_config = ConfigDict(extra="ignore")

    id: str
    merchant_id: Optional[str] = None
    name: str
    price: Decimal
    status: str = "active"
    stock: int = UNLIMITED_STOCK  # -1 = unlimited
    specifications: list[DishSpecification] = []
    addons: list[DishAddon] = []
    images: list[str] = []

    @field_validator("price", mode="before")
    @classmethod
    def convert_price_to_decimal(cls, v):
        return _to_decimal(v)


class Merchant(BaseModel):
    """Merchant model (only the fields pricing needs)."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    status: str = "active"
    delivery_fee: Decimal = Decimal("0")
    free_delivery_threshold: Optional[Decimal] = None
    min_order_amount: Decimal = Decimal("0")

    @field_validator("delivery_fee", "min_order_amount", mode="before")
    @classmethod
    def convert_fee_to_decimal(cls, v):
        return _to_decimal(v)

    @field_validator("free_delivery_threshold", mode="before")
    @classmethod
    def convert_threshold_to_decimal(cls, v):
        return _to_decimal(v) if v is not None else None


class User(BaseModel):
    """User model (loyalty-relevant fields)."""
    model_config = ConfigDict(extra="ignore")

    id: str
    openid: Optional[str] = None
    nickname: Optional[str] = None
    level: UserLevel = UserLevel.BRONZE
    points: int = 0
    total_points: int = 0
    total_spent: Decimal = Decimal("0")
    sign_in_count: int = 0
    last_sign_in_at: Optional[datetime] = None

    @field_validator("total_spent", mode="before")
    @classmethod
    def convert_to_decimal(cls, v):
        return _to_decimal(v)


class PointRecord(BaseModel):
    """Immutable points ledger entry."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: Optional[int] = None
    user_id: str
    type: PointType
    points: int  # signed delta
    reason: str = ""
    balance: int  # running balance after this entry
    order_no: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_at: Optional[datetime] = None


class DeliveryAddress(BaseModel):
    """Delivery address supplied by the request layer."""
    model_config = ConfigDict(extra="ignore")

    name: str
    phone: str
    province: str = ""
    city: str = ""
    district: str = ""
    address: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class OrderItem(BaseModel):
    """Priced line snapshot. Never recomputed from live dish data."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    dish_id: str
    dish_name: str = ""
    dish_image: Optional[str] = None
    unit_price: Decimal  # base price after specification lookup
    quantity: int
    spec_id: Optional[str] = None
    addon_ids: list[str] = []
    addon_total: Decimal = Decimal("0")
    total_price: Decimal
    remark: Optional[str] = None

    @field_validator("unit_price", "addon_total", "total_price", mode="before")
    @classmethod
    def convert_to_decimal(cls, v):
        return _round_money(v)


class Order(BaseModel):
    """Order model.

    `status` and `pay_status` are orthogonal: the first is the business
    lifecycle, the second tracks money. `delivery_status` belongs to the
    delivery collaborator and is only mirrored here.
    """
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    order_no: str
    user_id: str
    merchant_id: str
    items: list[OrderItem]
    # Money
    subtotal: Decimal
    delivery_fee: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    coupon_id: Optional[str] = None
    coupon_amount: Decimal = Decimal("0")
    total: Decimal
    pay_amount: Decimal
    points_used: int = 0
    points_earned: int = 0
    settlement_applied: bool = False  # spend and reward written to the user ledger
    # Payment
    pay_status: PayStatus = PayStatus.UNPAID
    pay_method: Optional[str] = None
    pay_time: Optional[datetime] = None
    transaction_id: Optional[str] = None
    # Lifecycle
    status: OrderStatus = OrderStatus.PENDING
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    delivery_task_id: Optional[str] = None
    delivery_address: Optional[DeliveryAddress] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    remark: Optional[str] = None
    actual_delivery_time: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    cancel_time: Optional[datetime] = None
    refund_no: Optional[str] = None
    refund_reason: Optional[str] = None
    refund_time: Optional[datetime] = None
    refund_amount: Decimal = Decimal("0")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator(
        "subtotal",
        "delivery_fee",
        "discount",
        "coupon_amount",
        "total",
        "pay_amount",
        "refund_amount",
        mode="before",
    )
    @classmethod
    def convert_amount_to_decimal(cls, v):
        return _round_money(v)

    def to_row(self) -> dict[str, Any]:
        """Serialize for the orders table (JSON-safe, money as strings)."""
        return self.model_dump(mode="json", exclude={"id"}, exclude_none=False)
