"""
FastAPI application factory.

Only the gateway-facing surface lives here: callbacks, the cron sweep and
a health check. Domain errors map to JSON with their stable `kind`.
"""
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from orderpay import __version__
from orderpay.errors import (
    AlreadySignedInToday,
    ConcurrentUpdateError,
    GatewayError,
    InsufficientPoints,
    InsufficientStock,
    InvalidStateTransition,
    NotFoundError,
    OrderPayError,
    SettlementIncomplete,
    SignatureMismatch,
    ValidationError,
)
from orderpay.logging import get_logger
from orderpay.routers import cron_router, webhooks_router
from orderpay.routers.deps import shutdown_services

logger = get_logger(__name__)

# Most specific first
ERROR_STATUS_CODES = (
    (ValidationError, 400),
    (SignatureMismatch, 400),
    (NotFoundError, 404),
    (InvalidStateTransition, 409),
    (InsufficientStock, 409),
    (InsufficientPoints, 409),
    (AlreadySignedInToday, 409),
    (ConcurrentUpdateError, 409),
    (SettlementIncomplete, 503),
    (GatewayError, 502),
)


def status_code_for(error: OrderPayError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


async def order_pay_error_handler(request: Request, exc: OrderPayError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    yield
    await shutdown_services()


def create_app() -> FastAPI:
    app = FastAPI(
        title="orderpay",
        description="Order/payment reconciliation core",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_exception_handler(OrderPayError, order_pay_error_handler)
    app.include_router(webhooks_router)
    app.include_router(cron_router)

    @app.get("/api/health")
    async def health_check():
        return {
            "status": "ok",
            "version": __version__,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    return app
