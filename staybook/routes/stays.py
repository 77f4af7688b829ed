"""Room availability and price quotes. Both are advisory; booking creation re-checks everything."""

from fastapi import APIRouter, Depends, Query

from staybook.core.auth import Actor
from staybook.core.container import Services
from staybook.core.dependencies import get_current_actor, get_services
from staybook.models.booking import BookingType
from staybook.schemas import AvailabilityOut, PriceBreakdownOut, PriceQuoteRequest, UTCDatetime
from staybook.services.pricing import AddonRequest

router = APIRouter(tags=["stays"])


@router.get("/rooms/{room_id}/availability", response_model=AvailabilityOut)
async def check_availability(
    room_id: int,
    check_in: UTCDatetime = Query(...),
    check_out: UTCDatetime = Query(...),
    guests: int = Query(default=1, ge=1),
    booking_type: BookingType = Query(default=BookingType.DAILY),
    services: Services = Depends(get_services),
):
    return await services.availability.check_availability(room_id, check_in, check_out, guests, booking_type)


@router.post("/pricing/quote", response_model=PriceBreakdownOut)
async def quote_price(
    body: PriceQuoteRequest,
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    return await services.pricing.compute_price(
        body.room_id,
        body.check_in,
        body.check_out,
        body.booking_type,
        addons=[AddonRequest(a.addon_id, a.quantity) for a in body.addons],
        coupon_code=body.coupon_code,
        user_id=actor.user_id,
    )
