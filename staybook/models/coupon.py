"""Coupon and coupon usage models."""

import enum
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from staybook.models.base import Base, TimestampMixin, UTCDateTime, str_enum
from staybook.models.booking import BookingType


class DiscountType(enum.StrEnum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CouponStatus(enum.StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Coupon(TimestampMixin, Base):
    __tablename__ = "coupons"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[CouponStatus] = mapped_column(
        str_enum(CouponStatus, "coupon_status"), default=CouponStatus.ACTIVE, nullable=False
    )

    discount_type: Mapped[DiscountType] = mapped_column(str_enum(DiscountType, "discount_type"), nullable=False)
    # Percent for PERCENTAGE, paise for FIXED
    discount_value: Mapped[int] = mapped_column(Integer, nullable=False)
    max_discount_paise: Mapped[int | None] = mapped_column(Integer)
    min_order_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    valid_from: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    valid_to: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # None = unlimited
    usage_limit: Mapped[int | None] = mapped_column(Integer)
    used_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    per_user_limit: Mapped[int | None] = mapped_column(Integer)

    # Scoping: None = applies everywhere
    hotel_id: Mapped[int | None] = mapped_column(ForeignKey("hotels.id"))
    room_type_id: Mapped[int | None] = mapped_column(Integer)
    booking_type: Mapped[BookingType | None] = mapped_column(str_enum(BookingType, "booking_type"))

    def __repr__(self) -> str:
        return f"<Coupon {self.code} {self.used_count}/{self.usage_limit}>"


class CouponUsage(TimestampMixin, Base):
    """One row per redemption of a coupon against a booking."""

    __tablename__ = "coupon_usages"

    id: Mapped[int] = mapped_column(primary_key=True)
    coupon_id: Mapped[int] = mapped_column(ForeignKey("coupons.id"), nullable=False)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False, unique=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    discount_paise: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (Index("ix_coupon_usage_coupon_user", "coupon_id", "user_id"),)

    def __repr__(self) -> str:
        return f"<CouponUsage coupon={self.coupon_id} booking={self.booking_id}>"
