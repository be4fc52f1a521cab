"""
Supabase Database Service

Aggregates the repositories over one async client.

Usage:
    db = await Database.create(settings)
    order = await db.orders.get_by_order_no("202410190427")
"""
from supabase._async.client import AsyncClient

from orderpay.config import Settings
from orderpay.db import get_supabase
from orderpay.logging import get_logger
from orderpay.services.repositories import (
    DishRepository,
    MerchantRepository,
    OrderRepository,
    PointRecordRepository,
    UserRepository,
)

logger = get_logger(__name__)


class Database:
    """
    Repositories sharing one Supabase client.

    Must be built via `create()` in async context, or directly from an
    existing client (tests pass an in-memory fake).
    """

    def __init__(self, client: AsyncClient):
        self.client = client
        self.orders = OrderRepository(client)
        self.dishes = DishRepository(client)
        self.merchants = MerchantRepository(client)
        self.users = UserRepository(client)
        self.point_records = PointRecordRepository(client)

    @classmethod
    async def create(cls, settings: Settings) -> "Database":
        """Async factory: creates the client from SUPABASE_* settings."""
        client = await get_supabase(settings)
        logger.info("Database client initialized")
        return cls(client)
