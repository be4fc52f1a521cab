"""Dish Repository - catalog reads and conditional stock writes."""
from typing import Dict, Iterable, Optional

from orderpay.services.models import Dish

from .base import BaseRepository


class DishRepository(BaseRepository):
    """Dish database operations."""

    table_name = "dishes"

    async def get_by_id(self, dish_id: str) -> Optional[Dish]:
        result = await self.table().select("*").eq("id", dish_id).execute()
        return Dish(**result.data[0]) if result.data else None

    async def get_many(self, dish_ids: Iterable[str]) -> Dict[str, Dish]:
        """Dishes by id; unknown ids are simply absent from the result."""
        ids = list(dict.fromkeys(dish_ids))
        if not ids:
            return {}
        result = await self.table().select("*").in_("id", ids).execute()
        return {row["id"]: Dish(**row) for row in result.data}

    async def update_stock_if(self, dish_id: str, expected: int, new_stock: int) -> bool:
        """Set stock only if it still equals the observed value."""
        result = (
            await self.table()
            .update({"stock": new_stock})
            .eq("id", dish_id)
            .eq("stock", expected)
            .execute()
        )
        return len(result.data) > 0
