"""
Routers

- webhooks: gateway payment/refund callbacks and public payment config
- cron: pending payment sweep
"""
from .cron import router as cron_router
from .webhooks import router as webhooks_router

__all__ = ["cron_router", "webhooks_router"]
