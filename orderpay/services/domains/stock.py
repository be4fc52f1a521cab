"""Stock ledger over DishRepository.

Finite stock is changed with compare-and-set writes on the observed value;
a lost race re-reads and re-checks. `-1` means unlimited and is never
touched.
"""
from typing import Iterable, List, Optional, Tuple

from orderpay.errors import ConcurrentUpdateError, InsufficientStock, NotFoundError, ValidationError
from orderpay.logging import get_logger
from orderpay.payments.constants import UNLIMITED_STOCK
from orderpay.services.repositories import DishRepository

logger = get_logger(__name__)

MAX_CAS_ATTEMPTS = 10


class StockLedger:
    """Per-dish inventory operations."""

    def __init__(self, repo: DishRepository, max_attempts: int = MAX_CAS_ATTEMPTS):
        self.repo = repo
        self.max_attempts = max_attempts

    async def _load_stock(self, dish_id: str) -> Optional[int]:
        dish = await self.repo.get_by_id(dish_id)
        return dish.stock if dish is not None else None

    @staticmethod
    def _check_quantity(quantity: int) -> None:
        if quantity < 1:
            raise ValidationError(f"quantity must be at least 1, got {quantity}")

    async def reserve(self, dish_id: str, quantity: int) -> None:
        """
        Decrement stock by quantity.

        Raises:
            InsufficientStock: If finite stock is below quantity
            ValidationError: If quantity is below 1
            NotFoundError: If the dish does not exist
            ConcurrentUpdateError: If the write kept losing races
        """
        self._check_quantity(quantity)
        for _ in range(self.max_attempts):
            stock = await self._load_stock(dish_id)
            if stock is None:
                raise NotFoundError(f"Dish {dish_id} not found")
            if stock == UNLIMITED_STOCK:
                return
            if stock < quantity:
                raise InsufficientStock(dish_id, quantity, stock)
            if await self.repo.update_stock_if(dish_id, stock, stock - quantity):
                logger.debug("Reserved %s of dish %s (%s -> %s)", quantity, dish_id, stock, stock - quantity)
                return
        raise ConcurrentUpdateError("dishes", dish_id)

    async def release(self, dish_id: str, quantity: int) -> None:
        """
        Increment stock by quantity (inverse of reserve).

        A dish deleted since it was reserved has nothing to give back to.
        """
        self._check_quantity(quantity)
        for _ in range(self.max_attempts):
            stock = await self._load_stock(dish_id)
            if stock is None:
                logger.warning("Dish %s no longer exists, %s units not restored", dish_id, quantity)
                return
            if stock == UNLIMITED_STOCK:
                return
            if await self.repo.update_stock_if(dish_id, stock, stock + quantity):
                return
        raise ConcurrentUpdateError("dishes", dish_id)

    async def reserve_many(self, items: Iterable[Tuple[str, int]]) -> None:
        """
        Reserve every (dish_id, quantity) pair or none of them.

        Lines already reserved are released when a later line fails.
        """
        reserved: List[Tuple[str, int]] = []
        try:
            for dish_id, quantity in items:
                await self.reserve(dish_id, quantity)
                reserved.append((dish_id, quantity))
        except Exception:
            await self.release_many(reserved)
            raise

    async def release_many(self, items: Iterable[Tuple[str, int]]) -> None:
        """Release every pair; the first failure is raised once all were tried."""
        first_error: Optional[Exception] = None
        for dish_id, quantity in items:
            try:
                await self.release(dish_id, quantity)
            except Exception as e:
                logger.exception("Releasing %s of dish %s failed", quantity, dish_id)
                first_error = first_error or e
        if first_error is not None:
            raise first_error
