"""Booking model.

A booking reserves a room for a guest over a [check_in, check_out) interval.
This is the core transactional entity in the system.
"""

import enum
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from staybook.models.base import Base, JSONType, TimestampMixin, UTCDateTime, str_enum


class BookingType(enum.StrEnum):
    DAILY = "daily"
    HOURLY = "hourly"


class PaymentMode(enum.StrEnum):
    ONLINE = "online"
    OFFLINE = "offline"


class BookingStatus(enum.StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    CHECKED_IN = "checked_in"
    COMPLETED = "completed"
    PAYMENT_FAILED = "payment_failed"


class BookingPaymentStatus(enum.StrEnum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Booking(TimestampMixin, Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    hotel_id: Mapped[int] = mapped_column(ForeignKey("hotels.id"), nullable=False)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id"), nullable=False)

    # When
    check_in: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    check_out: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    booking_type: Mapped[BookingType] = mapped_column(str_enum(BookingType, "booking_type"), nullable=False)
    guest_count: Mapped[int] = mapped_column(Integer, nullable=False)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        str_enum(BookingStatus, "booking_status"), default=BookingStatus.CONFIRMED, nullable=False
    )
    payment_status: Mapped[BookingPaymentStatus] = mapped_column(
        str_enum(BookingPaymentStatus, "booking_payment_status"),
        default=BookingPaymentStatus.PENDING,
        nullable=False,
    )
    cancelled_by: Mapped[str | None] = mapped_column(String(20))
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    # Money (paise)
    payment_mode: Mapped[PaymentMode] = mapped_column(str_enum(PaymentMode, "payment_mode"), nullable=False)
    total_amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    advance_amount_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    remaining_amount_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    coupon_discount_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Metadata
    special_requests: Mapped[str | None] = mapped_column(Text)
    price_breakdown: Mapped[dict | None] = mapped_column(JSONType, default=dict)

    __table_args__ = (
        # Overlap checks scan a room's bookings by interval
        Index("ix_bookings_room_interval", "room_id", "check_in", "check_out"),
        # Fast lookups by user (my bookings)
        Index("ix_bookings_user", "user_id", "check_in"),
        Index("ix_bookings_hotel", "hotel_id", "check_in"),
    )

    def __repr__(self) -> str:
        return f"<Booking {self.id} room={self.room_id} {self.check_in:%Y-%m-%d %H:%M}-{self.check_out:%Y-%m-%d %H:%M}>"


class BookingAddon(TimestampMixin, Base):
    """One priced addon line on a booking, frozen at booking time."""

    __tablename__ = "booking_addons"

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False, index=True)
    addon_id: Mapped[int] = mapped_column(ForeignKey("addons.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    unit_price_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    total_paise: Mapped[int] = mapped_column(Integer, nullable=False)

    def __repr__(self) -> str:
        return f"<BookingAddon {self.name} x{self.quantity} booking={self.booking_id}>"
