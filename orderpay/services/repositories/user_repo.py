"""User Repository - loyalty fields of users.

Balance, lifetime points and lifetime spend only change through the
`apply_user_ledger` Postgres function, which updates the user row, writes
the journal entry and records the idempotency key in one transaction.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from orderpay.payments.constants import PointType
from orderpay.services.models import PointRecord, User
from orderpay.services.money import money_str

from .base import BaseRepository

LEDGER_APPLIED = "applied"
LEDGER_DUPLICATE = "duplicate"  # idempotency key seen before, nothing changed
LEDGER_INSUFFICIENT = "insufficient"
LEDGER_NOT_FOUND = "not_found"


@dataclass(frozen=True)
class LedgerChange:
    """Outcome of one `apply_user_ledger` call."""
    status: str
    user: Optional[User]
    record: Optional[PointRecord]

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> "LedgerChange":
        user = data.get("user")
        record = data.get("record")
        return cls(
            status=data["status"],
            user=User(**user) if user else None,
            record=PointRecord(**record) if record else None,
        )


class UserRepository(BaseRepository):
    """User database operations."""

    table_name = "users"

    async def get_by_id(self, user_id: str) -> Optional[User]:
        result = await self.table().select("*").eq("id", user_id).execute()
        return User(**result.data[0]) if result.data else None

    async def apply_ledger_change(
        self,
        user_id: str,
        points_delta: int = 0,
        point_type: PointType = PointType.EARN,
        reason: str = "",
        order_no: Optional[str] = None,
        counts_lifetime: bool = False,
        spent_delta: Decimal = Decimal("0"),
        idempotency_key: Optional[str] = None,
        signed_in_at: Optional[datetime] = None,
        sign_in_count: Optional[int] = None,
    ) -> LedgerChange:
        """
        Atomically change a user's points and/or lifetime spend.

        A non-zero `points_delta` appends one point_records row carrying the
        new balance. A repeated `idempotency_key` is a no-op reported as
        LEDGER_DUPLICATE. Debits that would go negative change nothing and
        report LEDGER_INSUFFICIENT.
        """
        result = await self.client.rpc(
            "apply_user_ledger",
            {
                "p_user_id": user_id,
                "p_points_delta": points_delta,
                "p_type": PointType(point_type).value,
                "p_reason": reason,
                "p_order_no": order_no,
                "p_counts_lifetime": counts_lifetime,
                "p_spent_delta": money_str(spent_delta),
                "p_idempotency_key": idempotency_key,
                "p_signed_in_at": signed_in_at.isoformat() if signed_in_at else None,
                "p_sign_in_count": sign_in_count,
            },
        ).execute()
        return LedgerChange.from_rpc(result.data)
