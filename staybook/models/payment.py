"""Payment models.

Payment = one expected or received amount against a booking. A booking owns
one row (full) or two (advance + remaining) depending on its payment mode.
PaymentOrder = a Razorpay order opened to collect an online Payment row.
"""

import enum
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from staybook.models.base import Base, TimestampMixin, UTCDateTime, str_enum
from staybook.models.booking import PaymentMode


class PaymentType(enum.StrEnum):
    FULL = "full"
    ADVANCE = "advance"
    REMAINING = "remaining"


class PaymentStatus(enum.StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUND = "refund"  # refund requested, not yet processed
    REFUND_COMPLETED = "refund_completed"


class PaymentOrderStatus(enum.StrEnum):
    CREATED = "created"
    ATTEMPTED = "attempted"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Payment(TimestampMixin, Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_type: Mapped[PaymentType] = mapped_column(str_enum(PaymentType, "payment_type"), nullable=False)
    mode: Mapped[PaymentMode] = mapped_column(str_enum(PaymentMode, "payment_mode"), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        str_enum(PaymentStatus, "payment_status"), default=PaymentStatus.PENDING, nullable=False
    )

    # Portion of amount_paise settled from the guest's wallet
    wallet_amount_used_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Gateway references (online only)
    gateway_order_id: Mapped[str | None] = mapped_column(String(100))
    gateway_payment_id: Mapped[str | None] = mapped_column(String(100), index=True)
    gateway_signature: Mapped[str | None] = mapped_column(String(200))
    gateway_refund_id: Mapped[str | None] = mapped_column(String(100))  # set as soon as the gateway accepts a refund
    method: Mapped[str | None] = mapped_column(String(30))  # card, upi, netbanking, wallet, cash
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    __table_args__ = (Index("ix_payments_booking", "booking_id", "status"),)

    def __repr__(self) -> str:
        return f"<Payment {self.payment_type.value} {self.amount_paise}p booking={self.booking_id} {self.status.value}>"


class PaymentOrder(TimestampMixin, Base):
    __tablename__ = "payment_orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False)
    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    gateway_order_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    receipt: Mapped[str] = mapped_column(String(100), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)

    # amount_paise is what the gateway collects; original_amount_paise is the Payment row's amount
    amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    original_amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    wallet_amount_used_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[PaymentOrderStatus] = mapped_column(
        str_enum(PaymentOrderStatus, "payment_order_status"), default=PaymentOrderStatus.CREATED, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (Index("ix_payment_orders_booking", "booking_id", "status"),)

    def is_live(self, now: datetime) -> bool:
        """Created and still inside its TTL window."""
        return self.status == PaymentOrderStatus.CREATED and now < self.expires_at

    def __repr__(self) -> str:
        return f"<PaymentOrder {self.gateway_order_id} {self.amount_paise}p {self.status.value}>"
