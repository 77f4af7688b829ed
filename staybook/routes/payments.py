"""Payment routes: open a gateway order, verify the checkout callback, record cash at the desk."""

from fastapi import APIRouter, Depends, status

from staybook.core.auth import Actor
from staybook.core.container import Services
from staybook.core.dependencies import get_current_actor, get_services
from staybook.schemas import (
    OfflinePaymentRequest,
    PaymentOrderCreate,
    PaymentOrderOut,
    PaymentOut,
    PaymentVerifyOut,
    PaymentVerifyRequest,
)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/orders", response_model=PaymentOrderOut, status_code=status.HTTP_201_CREATED)
async def create_payment_order(
    body: PaymentOrderCreate,
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    return await services.payments.create_payment_order(
        actor, body.booking_id, body.amount_paise, body.wallet_amount_paise
    )


@router.post("/verify", response_model=PaymentVerifyOut)
async def verify_payment(
    body: PaymentVerifyRequest,
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    return await services.payments.verify_payment(
        body.gateway_order_id, body.gateway_payment_id, body.signature, actor=actor
    )


@router.post("/{payment_id}/offline", response_model=PaymentOut)
async def record_offline_payment(
    payment_id: int,
    body: OfflinePaymentRequest,
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    return await services.payments.record_offline_payment(actor, payment_id, body.method)
