"""Merchant Repository - read-only merchant lookups."""
from typing import Optional

from orderpay.services.models import Merchant

from .base import BaseRepository


class MerchantRepository(BaseRepository):
    """Merchant database operations."""

    table_name = "merchants"

    async def get_by_id(self, merchant_id: str) -> Optional[Merchant]:
        result = await self.table().select("*").eq("id", merchant_id).execute()
        return Merchant(**result.data[0]) if result.data else None
