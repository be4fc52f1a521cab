"""
Cron job endpoints for scheduled tasks.

Called by the scheduler with CRON_SECRET authentication.
"""
import hmac

from fastapi import APIRouter, Depends, Header, HTTPException

from orderpay.routers.deps import Services, get_services

router = APIRouter(prefix="/api/cron", tags=["cron"])


def _verify_cron_secret(authorization: str | None, cron_secret: str) -> None:
    """Verify cron job authentication."""
    if not cron_secret or not hmac.compare_digest(authorization or "", f"Bearer {cron_secret}"):
        raise HTTPException(status_code=401, detail="Invalid cron secret")


@router.get("/check-pending-payments")
async def cron_check_pending_payments(
    authorization: str | None = Header(None),
    services: Services = Depends(get_services),
):
    """
    Poll the gateway for recent unpaid orders and settle the paid ones.

    Same idempotent settlement path as the payment callback.
    """
    _verify_cron_secret(authorization, services.settings.cron_secret)
    return await services.reconciler.poll_pending(
        within_minutes=services.settings.pending_poll_minutes
    )
