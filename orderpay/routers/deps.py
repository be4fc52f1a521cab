"""
Shared Dependencies for Routers

Services are wired once per process and reused across requests.
Tests replace `get_services` through FastAPI dependency overrides.
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional

from orderpay.config import Settings, load_settings
from orderpay.db import get_redis
from orderpay.logging import get_logger
from orderpay.orders.pricing import PricingEngine
from orderpay.orders.service import OrderService
from orderpay.payments.dedup import CallbackDeduplicator
from orderpay.payments.gateway import PaymentGateway
from orderpay.payments.reconciler import PaymentReconciler
from orderpay.services.alerts import FailureReporter
from orderpay.services.database import Database
from orderpay.services.domains import PointsLedger, StockLedger

logger = get_logger(__name__)


@dataclass
class Services:
    """Everything the routers need, built from one Settings value."""
    settings: Settings
    db: Database
    gateway: PaymentGateway
    orders: OrderService
    points: PointsLedger
    reconciler: PaymentReconciler
    reporter: FailureReporter


def build_services(
    settings: Settings,
    db: Database,
    gateway: Optional[PaymentGateway] = None,
    redis_client: Any = None,
    reporter: Optional[FailureReporter] = None,
) -> Services:
    """Wire the core components together."""
    gateway = gateway or PaymentGateway(settings.gateway)
    reporter = reporter or FailureReporter(settings.telegram_token, settings.admin_chat_ids)
    stock = StockLedger(db.dishes)
    points = PointsLedger(db.users, db.point_records, settings.loyalty)
    pricing = PricingEngine(settings.loyalty.points_to_currency_rate)
    dedup = CallbackDeduplicator(settings.dedup_window_seconds, redis_client)
    reconciler = PaymentReconciler(db, gateway, stock, points, dedup, reporter, settings.loyalty)
    return Services(
        settings=settings,
        db=db,
        gateway=gateway,
        orders=OrderService(db, pricing, stock, points, reporter),
        points=points,
        reconciler=reconciler,
        reporter=reporter,
    )


# ==================== LAZY SINGLETONS ====================

_services: Optional[Services] = None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


async def get_services() -> Services:
    """Get or create the Services singleton (lazy loaded)."""
    global _services
    if _services is None:
        settings = get_settings()
        db = await Database.create(settings)
        _services = build_services(settings, db, redis_client=get_redis(settings))
        if not settings.gateway.is_configured:
            logger.warning("Payment gateway missing settings: %s", settings.gateway.missing())
    return _services


# ==================== SHUTDOWN HELPERS ====================

async def shutdown_services() -> None:
    """Close http clients held by the singleton services."""
    global _services
    if _services is None:
        return
    await _services.gateway.aclose()
    await _services.reporter.close()
    _services = None
