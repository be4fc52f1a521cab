"""Order Repository - Order operations.

Writes that move the lifecycle are conditional on the prior
status/pay_status, so only one of several racing writers succeeds.
"""
from datetime import datetime
from typing import Any, List, Optional

from orderpay.logging import get_logger
from orderpay.payments.constants import OrderStatus, PayStatus
from orderpay.services.models import Order

from .base import BaseRepository

logger = get_logger(__name__)


def changed_fields(before: Order, after: Order) -> dict[str, Any]:
    """JSON-safe columns whose value differs between two order states."""
    old = before.to_row()
    new = after.to_row()
    return {column: value for column, value in new.items() if old.get(column) != value}


class OrderRepository(BaseRepository):
    """Order database operations."""

    table_name = "orders"

    async def create(self, order: Order) -> Order:
        """Insert a new order row."""
        result = await self.table().insert(order.to_row()).execute()
        return Order(**result.data[0])

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self.table().select("*").eq("id", order_id).execute()
        return Order(**result.data[0]) if result.data else None

    async def get_by_order_no(self, order_no: str) -> Optional[Order]:
        result = await self.table().select("*").eq("order_no", order_no).execute()
        return Order(**result.data[0]) if result.data else None

    async def exists_order_no(self, order_no: str) -> bool:
        result = await self.table().select("id").eq("order_no", order_no).execute()
        return bool(result.data)

    async def update_if(
        self, order_id: str, changes: dict[str, Any], expected: dict[str, Any]
    ) -> Optional[Order]:
        """
        Conditional update.

        Returns:
            The updated order, or None if the row no longer matches `expected`
        """
        query = self.apply_expected(self.table().update(changes).eq("id", order_id), expected)
        result = await query.execute()
        return Order(**result.data[0]) if result.data else None

    async def save_transition(self, before: Order, after: Order) -> Optional[Order]:
        """Persist `after` only if the row still has `before`'s status and pay_status."""
        changes = changed_fields(before, after)
        if not changes:
            return before
        expected = {
            "status": OrderStatus(before.status).value,
            "pay_status": PayStatus(before.pay_status).value,
        }
        saved = await self.update_if(before.id, changes, expected)
        if saved is None:
            logger.info(
                "Order %s changed concurrently (expected %s/%s)",
                before.order_no,
                expected["status"],
                expected["pay_status"],
            )
        return saved

    async def list_unpaid_since(self, cutoff: datetime, limit: int = 50) -> List[Order]:
        """Pending unpaid orders created after cutoff, oldest first."""
        result = (
            await self.table()
            .select("*")
            .eq("status", OrderStatus.PENDING.value)
            .eq("pay_status", PayStatus.UNPAID.value)
            .gte("created_at", cutoff.isoformat())
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return [Order(**row) for row in result.data]

    async def mark_settlement_applied(self, order_id: str) -> Optional[Order]:
        """Flag a paid order whose spend and reward are in the user ledger."""
        result = await self.table().update({"settlement_applied": True}).eq("id", order_id).execute()
        return Order(**result.data[0]) if result.data else None

    async def list_unapplied_settlements(self, limit: int = 50) -> List[Order]:
        """Paid orders whose settlement commands have not all been applied yet."""
        result = (
            await self.table()
            .select("*")
            .eq("pay_status", PayStatus.PAID.value)
            .eq("settlement_applied", False)
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return [Order(**row) for row in result.data]
