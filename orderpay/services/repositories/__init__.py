"""
Repository Pattern for Database Operations

- OrderRepository: orders, conditional lifecycle writes
- DishRepository: catalog, conditional stock writes
- MerchantRepository: merchant lookups
- UserRepository: loyalty fields, conditional balance writes
- PointRecordRepository: append-only points journal
"""
from .dish_repo import DishRepository
from .merchant_repo import MerchantRepository
from .order_repo import OrderRepository
from .point_repo import PointRecordRepository
from .user_repo import UserRepository

__all__ = [
    "DishRepository",
    "MerchantRepository",
    "OrderRepository",
    "PointRecordRepository",
    "UserRepository",
]
