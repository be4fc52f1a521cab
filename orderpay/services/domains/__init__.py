"""Domain services wrapping repositories."""
from .points import PointsLedger, calculate_user_level
from .stock import StockLedger

__all__ = [
    "PointsLedger",
    "StockLedger",
    "calculate_user_level",
]
