"""Pricing service for booking totals.

The calculation half of this module is pure: no database, no async. It turns
a room's rates, the requested interval, addon lines, the fee schedule and a
coupon discount into a PriceBreakdown. ``PricingService`` at the bottom loads
those inputs from the database and runs the calculation.

All amounts are integer paise.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from staybook.core.errors import NotFoundError, ValidationError
from staybook.models.booking import BookingType
from staybook.models.hotel import Addon, Hotel, Room, RoomHourlyStay
from staybook.services.coupons import CouponQuote, CouponValidator

# Submitted totals may differ from the computed total by at most this much
TOTAL_TOLERANCE_PAISE = 1


@dataclass(frozen=True)
class FeeSchedule:
    """Tax percent and flat platform fee applied to every booking."""

    tax_percent: float
    platform_fee_paise: int


@dataclass(frozen=True)
class AddonRequest:
    addon_id: int
    quantity: int = 1


@dataclass(frozen=True)
class AddonLine:
    addon_id: int
    name: str
    unit_price_paise: int
    quantity: int

    @property
    def total_paise(self) -> int:
        return self.unit_price_paise * self.quantity


@dataclass(frozen=True)
class PriceBreakdown:
    booking_type: BookingType
    units: int  # nights for daily, hours for hourly
    base_paise: int
    addons_paise: int
    tax_paise: int
    platform_fee_paise: int
    discount_paise: int
    total_paise: int
    addon_lines: tuple[AddonLine, ...] = ()
    coupon: CouponQuote | None = field(default=None, compare=False)

    @property
    def subtotal_paise(self) -> int:
        """Pre-tax amount coupons are computed against."""
        return self.base_paise + self.addons_paise

    def as_dict(self) -> dict:
        return {
            "booking_type": self.booking_type.value,
            "units": self.units,
            "base_paise": self.base_paise,
            "addons_paise": self.addons_paise,
            "tax_paise": self.tax_paise,
            "platform_fee_paise": self.platform_fee_paise,
            "discount_paise": self.discount_paise,
            "total_paise": self.total_paise,
        }


def stay_nights(check_in: datetime, check_out: datetime) -> int:
    """Nights for a daily stay; a partial day counts as a full night."""
    return math.ceil((check_out - check_in) / timedelta(days=1))


def stay_hours(check_in: datetime, check_out: datetime) -> int:
    """Hours for an hourly stay. Fractional hours cannot be priced."""
    seconds = (check_out - check_in).total_seconds()
    if seconds % 3600:
        raise ValidationError(
            f"Hourly stays must be a whole number of hours, got {seconds / 3600:.2f}.", rule="hourly_fraction"
        )
    return int(seconds // 3600)


def hourly_tier_price(tiers: Sequence[RoomHourlyStay], hours: int) -> int:
    """Price of the tier matching the exact hour count. No interpolation between tiers."""
    for tier in tiers:
        if tier.is_active and tier.hours == hours:
            return tier.price_paise
    offered = sorted(t.hours for t in tiers if t.is_active)
    raise ValidationError(
        f"No {hours}-hour package for this room. Available packages: {', '.join(f'{h}h' for h in offered) or 'none'}.",
        rule="hourly_tier",
    )


def calculate_tax(taxable_paise: int, tax_percent: float) -> int:
    """Tax rounded half-up to the paise."""
    tax = Decimal(taxable_paise) * Decimal(str(tax_percent)) / Decimal(100)
    return int(tax.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def price_addons(available: Sequence[Addon], requested: Sequence[AddonRequest]) -> tuple[AddonLine, ...]:
    """Resolve requested addon ids against the hotel's active addons."""
    by_id = {a.id: a for a in available if a.is_active}
    lines = []
    for req in requested:
        if req.quantity < 1:
            raise ValidationError(f"Addon {req.addon_id} quantity must be at least 1.", rule="addon_quantity")
        addon = by_id.get(req.addon_id)
        if addon is None:
            raise ValidationError(f"Addon {req.addon_id} is not offered by this hotel.", rule="addon_unknown")
        lines.append(AddonLine(addon.id, addon.name, addon.price_paise, req.quantity))
    return tuple(lines)


def calculate_price(
    booking_type: BookingType,
    units: int,
    base_paise: int,
    fees: FeeSchedule,
    addon_lines: Sequence[AddonLine] = (),
    discount_paise: int = 0,
    coupon: CouponQuote | None = None,
) -> PriceBreakdown:
    """total = base + tax + platform fee + addons - discount.

    Tax is charged on base + addons. The discount never exceeds that subtotal.
    """
    addons_paise = sum(line.total_paise for line in addon_lines)
    subtotal = base_paise + addons_paise
    discount = min(max(discount_paise, 0), subtotal)
    tax = calculate_tax(subtotal, fees.tax_percent)
    total = base_paise + tax + fees.platform_fee_paise + addons_paise - discount

    return PriceBreakdown(
        booking_type=booking_type,
        units=units,
        base_paise=base_paise,
        addons_paise=addons_paise,
        tax_paise=tax,
        platform_fee_paise=fees.platform_fee_paise,
        discount_paise=discount,
        total_paise=total,
        addon_lines=tuple(addon_lines),
        coupon=coupon,
    )


def check_submitted_total(expected_paise: int, submitted_paise: int) -> None:
    """The client's total must match ours. Never silently corrected."""
    if abs(expected_paise - submitted_paise) > TOTAL_TOLERANCE_PAISE:
        raise ValidationError(
            f"Submitted total {submitted_paise} paise does not match the calculated total {expected_paise} paise.",
            rule="price_mismatch",
        )


def validate_interval(check_in: datetime, check_out: datetime) -> None:
    if check_in >= check_out:
        raise ValidationError("Check-out must be after check-in.", rule="interval")


# ---------------------------------------------------------------------------
# Database-backed quote
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StayContext:
    """Hotel and room loaded for a quote or booking."""

    hotel: Hotel
    room: Room


class PricingService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fees: FeeSchedule,
        coupon_validator: CouponValidator,
    ):
        self._sessions = session_factory
        self._fees = fees
        self._coupons = coupon_validator

    async def compute_price(
        self,
        room_id: int,
        check_in: datetime,
        check_out: datetime,
        booking_type: BookingType,
        addons: Sequence[AddonRequest] = (),
        coupon_code: str | None = None,
        user_id: int | None = None,
    ) -> PriceBreakdown:
        async with self._sessions() as db:
            stay = await load_stay(db, room_id)
            return await self.quote(db, stay, check_in, check_out, booking_type, addons, coupon_code, user_id)

    async def quote(
        self,
        db: AsyncSession,
        stay: StayContext,
        check_in: datetime,
        check_out: datetime,
        booking_type: BookingType,
        addons: Sequence[AddonRequest] = (),
        coupon_code: str | None = None,
        user_id: int | None = None,
    ) -> PriceBreakdown:
        """Price a stay for an already-loaded hotel and room."""
        validate_interval(check_in, check_out)
        room = stay.room

        if booking_type == BookingType.DAILY:
            units = stay_nights(check_in, check_out)
            base = room.price_per_night_paise * units
        else:
            units = stay_hours(check_in, check_out)
            result = await db.execute(select(RoomHourlyStay).where(RoomHourlyStay.room_id == room.id))
            base = hourly_tier_price(result.scalars().all(), units)

        addon_lines: tuple[AddonLine, ...] = ()
        if addons:
            result = await db.execute(select(Addon).where(Addon.hotel_id == stay.hotel.id))
            addon_lines = price_addons(result.scalars().all(), addons)

        coupon = None
        if coupon_code:
            subtotal = base + sum(line.total_paise for line in addon_lines)
            coupon = await self._coupons.validate(
                db,
                code=coupon_code,
                hotel_id=stay.hotel.id,
                room_type_id=room.room_type_id,
                order_amount_paise=subtotal,
                user_id=user_id,
                booking_type=booking_type,
            )

        return calculate_price(
            booking_type,
            units,
            base,
            self._fees,
            addon_lines,
            discount_paise=coupon.discount_paise if coupon else 0,
            coupon=coupon,
        )


async def load_stay(db: AsyncSession, room_id: int) -> StayContext:
    """Fetch the room and its hotel, or raise NotFoundError."""
    room = await db.get(Room, room_id)
    if room is None:
        raise NotFoundError(f"Room {room_id} not found.")
    hotel = await db.get(Hotel, room.hotel_id)
    if hotel is None or not hotel.is_active:
        raise NotFoundError(f"Hotel {room.hotel_id} not found.")
    return StayContext(hotel=hotel, room=room)
