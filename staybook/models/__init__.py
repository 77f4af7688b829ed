"""All models imported here for Alembic autogenerate discovery."""

from staybook.models.base import Base
from staybook.models.booking import (
    Booking,
    BookingAddon,
    BookingPaymentStatus,
    BookingStatus,
    BookingType,
    PaymentMode,
)
from staybook.models.coupon import Coupon, CouponStatus, CouponUsage, DiscountType
from staybook.models.hotel import Addon, Hotel, Room, RoomHourlyStay, RoomStatus
from staybook.models.notification import NotificationChannel, NotificationOutbox, OutboxStatus
from staybook.models.payment import Payment, PaymentOrder, PaymentOrderStatus, PaymentStatus, PaymentType
from staybook.models.refund import Refund, RefundMethod, RefundStatus, RefundType
from staybook.models.user import User, UserRole
from staybook.models.wallet import TransactionSource, TransactionType, Wallet, WalletTransaction

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Hotel",
    "Room",
    "RoomStatus",
    "RoomHourlyStay",
    "Addon",
    "Booking",
    "BookingAddon",
    "BookingType",
    "BookingStatus",
    "BookingPaymentStatus",
    "PaymentMode",
    "Payment",
    "PaymentType",
    "PaymentStatus",
    "PaymentOrder",
    "PaymentOrderStatus",
    "Coupon",
    "CouponStatus",
    "CouponUsage",
    "DiscountType",
    "Wallet",
    "WalletTransaction",
    "TransactionType",
    "TransactionSource",
    "Refund",
    "RefundType",
    "RefundStatus",
    "RefundMethod",
    "NotificationOutbox",
    "NotificationChannel",
    "OutboxStatus",
]
