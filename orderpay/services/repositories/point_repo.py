"""Point Record Repository - read side of the points journal.

Rows are written only by the `apply_user_ledger` function together with
the balance change they describe (see UserRepository).
"""
from typing import List

from orderpay.services.models import PointRecord

from .base import BaseRepository


class PointRecordRepository(BaseRepository):
    """Point record queries."""

    table_name = "point_records"

    async def list_for_user(self, user_id: str, limit: int = 20, offset: int = 0) -> List[PointRecord]:
        """Newest first (ids are a monotonically increasing identity)."""
        result = (
            await self.table()
            .select("*")
            .eq("user_id", user_id)
            .order("id", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        return [PointRecord(**row) for row in result.data]
