"""Booking routes: create, list, view, cancel, and the check-in/complete workflow.

All rules live in the services; handlers translate the request and return
the result. Domain errors become HTTP responses in the app's exception handlers.
"""

from fastapi import APIRouter, Depends, Query, status

from staybook.core.auth import Actor
from staybook.core.container import Services
from staybook.core.dependencies import get_current_actor, get_services
from staybook.models.booking import BookingStatus
from staybook.schemas import BookingCreate, BookingDetailOut, BookingOut, CancellationOut, CancelRequest, StatusUpdate
from staybook.services.booking_engine import BookingRequest
from staybook.services.pricing import AddonRequest

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingDetailOut, status_code=status.HTTP_201_CREATED)
async def create_booking(
    body: BookingCreate,
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    request = BookingRequest(
        room_id=body.room_id,
        check_in=body.check_in,
        check_out=body.check_out,
        booking_type=body.booking_type,
        guest_count=body.guest_count,
        payment_mode=body.payment_mode,
        total_amount_paise=body.total_amount_paise,
        advance_amount_paise=body.advance_amount_paise,
        addons=[AddonRequest(a.addon_id, a.quantity) for a in body.addons],
        coupon_code=body.coupon_code,
        special_requests=body.special_requests,
    )
    return await services.bookings.create_booking(actor, request)


@router.get("", response_model=list[BookingOut])
async def list_bookings(
    status_filter: BookingStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    return await services.bookings.list_bookings(actor, status_filter, limit, offset)


@router.get("/{booking_id}", response_model=BookingDetailOut)
async def get_booking(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    return await services.bookings.get_booking(actor, booking_id)


@router.post("/{booking_id}/cancel", response_model=CancellationOut)
async def cancel_booking(
    booking_id: int,
    body: CancelRequest,
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    """Cancel directly, or open a refund request when a payment has been collected."""
    return await services.cancellations.cancel_booking(actor, booking_id, body.reason)


@router.post("/{booking_id}/status", response_model=BookingOut)
async def update_booking_status(
    booking_id: int,
    body: StatusUpdate,
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    return await services.bookings.update_status(actor, booking_id, body.status)
