"""Refund model: a post-payment reversal request against a booking."""

import enum
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from staybook.models.base import Base, TimestampMixin, UTCDateTime, str_enum


class RefundType(enum.StrEnum):
    CANCELLATION = "cancellation"
    NO_SHOW = "no_show"
    ADMIN_REFUND = "admin_refund"


class RefundStatus(enum.StrEnum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
    REJECTED = "rejected"


class RefundMethod(enum.StrEnum):
    WALLET = "wallet"
    GATEWAY = "gateway"


class Refund(TimestampMixin, Base):
    __tablename__ = "refunds"

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False, index=True)
    original_payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)  # always the guest
    refund_type: Mapped[RefundType] = mapped_column(str_enum(RefundType, "refund_type"), nullable=False)
    status: Mapped[RefundStatus] = mapped_column(
        str_enum(RefundStatus, "refund_status"), default=RefundStatus.PENDING, nullable=False
    )

    original_amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    cancellation_fee_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refund_amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)

    reason: Mapped[str | None] = mapped_column(Text)
    requested_by: Mapped[str] = mapped_column(String(20), nullable=False)  # guest / hotel / admin / system

    # Set when an admin resolves the request
    refund_method: Mapped[RefundMethod | None] = mapped_column(str_enum(RefundMethod, "refund_method"))
    gateway_refund_id: Mapped[str | None] = mapped_column(String(100))
    processed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    failure_reason: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<Refund {self.id} booking={self.booking_id} {self.refund_amount_paise}p {self.status.value}>"
