"""Coupon validation and redemption.

Validation runs before the booking transaction and holds no locks. Redemption
runs inside it: the used_count increment is conditional on the usage limit, so
two bookings racing for the last use of a coupon cannot both succeed.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from staybook.core.errors import ConflictError, NotFoundError, ValidationError
from staybook.models.booking import BookingType
from staybook.models.coupon import Coupon, CouponStatus, CouponUsage, DiscountType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CouponQuote:
    coupon_id: int
    code: str
    discount_paise: int


class CouponValidator(Protocol):
    async def validate(
        self,
        db: AsyncSession,
        *,
        code: str,
        hotel_id: int,
        room_type_id: int | None,
        order_amount_paise: int,
        user_id: int | None,
        booking_type: BookingType,
    ) -> CouponQuote: ...


def compute_discount(coupon: Coupon, order_amount_paise: int) -> int:
    """Discount for an order, capped by max_discount and by the order itself."""
    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = order_amount_paise * coupon.discount_value // 100
    else:
        discount = coupon.discount_value
    if coupon.max_discount_paise is not None:
        discount = min(discount, coupon.max_discount_paise)
    return max(0, min(discount, order_amount_paise))


class DatabaseCouponValidator:
    """Checks a coupon code against the coupons table."""

    async def validate(
        self,
        db: AsyncSession,
        *,
        code: str,
        hotel_id: int,
        room_type_id: int | None,
        order_amount_paise: int,
        user_id: int | None,
        booking_type: BookingType,
    ) -> CouponQuote:
        result = await db.execute(select(Coupon).where(Coupon.code == code.strip().upper()))
        coupon = result.scalar_one_or_none()
        if coupon is None:
            raise NotFoundError(f"Coupon {code} not found.")

        now = datetime.now(UTC)
        if coupon.status != CouponStatus.ACTIVE:
            raise ValidationError(f"Coupon {coupon.code} is not active.", rule="coupon_inactive")
        if not coupon.valid_from <= now <= coupon.valid_to:
            raise ValidationError(f"Coupon {coupon.code} is not valid at this time.", rule="coupon_expired")
        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            raise ConflictError(f"Coupon {coupon.code} has been fully redeemed.", rule="coupon_exhausted")
        if order_amount_paise < coupon.min_order_paise:
            raise ValidationError(
                f"Coupon {coupon.code} needs a minimum order of {coupon.min_order_paise} paise.",
                rule="coupon_min_order",
            )

        # Scoping
        if coupon.hotel_id is not None and coupon.hotel_id != hotel_id:
            raise ValidationError(f"Coupon {coupon.code} is not valid for this hotel.", rule="coupon_scope")
        if coupon.room_type_id is not None and coupon.room_type_id != room_type_id:
            raise ValidationError(f"Coupon {coupon.code} is not valid for this room type.", rule="coupon_scope")
        if coupon.booking_type is not None and coupon.booking_type != booking_type:
            raise ValidationError(
                f"Coupon {coupon.code} is only valid for {coupon.booking_type.value} stays.", rule="coupon_scope"
            )

        if coupon.per_user_limit is not None and user_id is not None:
            result = await db.execute(
                select(func.count(CouponUsage.id)).where(
                    CouponUsage.coupon_id == coupon.id,
                    CouponUsage.user_id == user_id,
                )
            )
            if result.scalar_one() >= coupon.per_user_limit:
                raise ValidationError(
                    f"You have already used coupon {coupon.code} the maximum number of times.",
                    rule="coupon_per_user",
                )

        return CouponQuote(coupon.id, coupon.code, compute_discount(coupon, order_amount_paise))


async def redeem_coupon(
    db: AsyncSession,
    quote: CouponQuote,
    booking_id: int,
    user_id: int,
) -> CouponUsage:
    """Record a redemption and bump used_count. Must run inside the booking transaction.

    The increment only applies while used_count is under usage_limit. Zero
    affected rows means another booking took the last use.
    """
    result = await db.execute(
        update(Coupon)
        .where(
            Coupon.id == quote.coupon_id,
            or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
        )
        .values(used_count=Coupon.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.info("Coupon %s exhausted while booking %s was being created", quote.code, booking_id)
        raise ConflictError(f"Coupon {quote.code} has just been fully redeemed.", rule="coupon_exhausted")

    usage = CouponUsage(
        coupon_id=quote.coupon_id,
        booking_id=booking_id,
        user_id=user_id,
        discount_paise=quote.discount_paise,
    )
    db.add(usage)
    await db.flush()
    return usage
