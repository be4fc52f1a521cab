"""
Webhooks Router

Gateway callbacks. Both endpoints read the raw XML body, delegate to the
PaymentReconciler and always answer with the gateway's XML acknowledgment.
"""
from fastapi import APIRouter, Depends, Request, Response

from orderpay.routers.deps import Services, get_services

router = APIRouter(prefix="/api/payment", tags=["payment"])

XML_MEDIA_TYPE = "application/xml"


@router.post("/notify")
async def payment_notify(request: Request, services: Services = Depends(get_services)):
    """Payment result callback."""
    body = await request.body()
    ack = await services.reconciler.confirm_payment(body)
    return Response(content=ack, media_type=XML_MEDIA_TYPE)


@router.post("/refund-notify")
async def refund_notify(request: Request, services: Services = Depends(get_services)):
    """Refund outcome callback (encrypted req_info)."""
    body = await request.body()
    ack = await services.reconciler.handle_refund_notify(body)
    return Response(content=ack, media_type=XML_MEDIA_TYPE)


@router.get("/config")
async def payment_config(services: Services = Depends(get_services)):
    """Public payment/loyalty parameters for the mini-program."""
    settings = services.settings
    return {
        "app_id": settings.gateway.app_id,
        "points_rate": str(settings.loyalty.points_rate),
        "sign_in_points": settings.loyalty.sign_in_points,
        "points_to_currency_rate": str(settings.loyalty.points_to_currency_rate),
    }
