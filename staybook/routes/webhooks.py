"""Razorpay webhook handler.

Processes payment.captured and payment.failed events. Other events are
acknowledged and ignored.
"""

from fastapi import APIRouter, Depends, Request

from staybook.core.container import Services
from staybook.core.dependencies import get_services
from staybook.schemas import WebhookAck

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/razorpay", response_model=WebhookAck)
async def razorpay_webhook(request: Request, services: Services = Depends(get_services)):
    """The signature covers the raw body, so it is read before any parsing."""
    payload = await request.body()
    signature = request.headers.get("x-razorpay-signature")
    outcome = await services.payments.handle_webhook(payload, signature)
    return {"status": outcome}
