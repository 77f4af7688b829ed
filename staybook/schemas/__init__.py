"""Pydantic schemas for API serialisation."""

from datetime import UTC, datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from staybook.models.booking import BookingPaymentStatus, BookingStatus, BookingType, PaymentMode
from staybook.models.payment import PaymentOrderStatus, PaymentStatus, PaymentType
from staybook.models.refund import RefundMethod, RefundStatus, RefundType
from staybook.models.wallet import TransactionSource, TransactionType


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UTCDatetime = Annotated[datetime, AfterValidator(_as_utc)]

# --- Availability & pricing ---


class AvailabilityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    available: bool
    reason: str | None


class AddonIn(BaseModel):
    addon_id: int
    quantity: int = Field(default=1, ge=1)


class PriceQuoteRequest(BaseModel):
    room_id: int
    check_in: UTCDatetime
    check_out: UTCDatetime
    booking_type: BookingType = BookingType.DAILY
    addons: list[AddonIn] = []
    coupon_code: str | None = None


class AddonLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    addon_id: int
    name: str
    unit_price_paise: int
    quantity: int
    total_paise: int


class PriceBreakdownOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_type: BookingType
    units: int
    base_paise: int
    addons_paise: int
    tax_paise: int
    platform_fee_paise: int
    discount_paise: int
    total_paise: int
    addon_lines: list[AddonLineOut]


# --- Booking ---


class BookingCreate(BaseModel):
    room_id: int
    check_in: UTCDatetime
    check_out: UTCDatetime
    booking_type: BookingType = BookingType.DAILY
    guest_count: int = Field(default=1, ge=1)
    payment_mode: PaymentMode
    total_amount_paise: int = Field(ge=0)
    advance_amount_paise: int = Field(default=0, ge=0)
    addons: list[AddonIn] = []
    coupon_code: str | None = None
    special_requests: str | None = Field(default=None, max_length=1000)


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    hotel_id: int
    room_id: int
    check_in: datetime
    check_out: datetime
    booking_type: BookingType
    guest_count: int
    status: BookingStatus
    payment_status: BookingPaymentStatus
    payment_mode: PaymentMode
    total_amount_paise: int
    advance_amount_paise: int
    remaining_amount_paise: int
    coupon_discount_paise: int
    special_requests: str | None
    cancelled_by: str | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_at: datetime


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: int
    amount_paise: int
    payment_type: PaymentType
    mode: PaymentMode
    status: PaymentStatus
    wallet_amount_used_paise: int
    gateway_order_id: str | None
    gateway_payment_id: str | None
    method: str | None
    paid_at: datetime | None


class BookingAddonOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    addon_id: int
    name: str
    unit_price_paise: int
    quantity: int
    total_paise: int


class BookingDetailOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking: BookingOut
    payments: list[PaymentOut]
    addons: list[BookingAddonOut]


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class StatusUpdate(BaseModel):
    status: BookingStatus


# --- Refund ---


class RefundOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: int
    original_payment_id: int
    user_id: int
    refund_type: RefundType
    status: RefundStatus
    original_amount_paise: int
    cancellation_fee_paise: int
    refund_amount_paise: int
    reason: str | None
    requested_by: str
    refund_method: RefundMethod | None
    gateway_refund_id: str | None
    processed_at: datetime | None
    rejection_reason: str | None
    failure_reason: str | None
    created_at: datetime


class CancellationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking: BookingOut
    refund: RefundOut | None


class RefundProcessRequest(BaseModel):
    method: RefundMethod = RefundMethod.WALLET


class RefundRejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


# --- Payment ---


class PaymentOrderCreate(BaseModel):
    booking_id: int
    amount_paise: int = Field(gt=0)
    wallet_amount_paise: int = Field(default=0, ge=0)


class PaymentOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: int
    payment_id: int
    order_id: str | None
    amount_paise: int
    wallet_amount_used_paise: int
    currency: str
    key_id: str | None
    status: PaymentOrderStatus


class PaymentVerifyRequest(BaseModel):
    gateway_order_id: str
    gateway_payment_id: str
    signature: str


class PaymentVerifyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_id: int
    booking_id: int
    amount_paise: int


class OfflinePaymentRequest(BaseModel):
    method: str = Field(default="cash", max_length=30)


class WebhookAck(BaseModel):
    status: str


# --- Wallet ---


class WalletOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    balance_paise: int
    total_earned_paise: int
    total_spent_paise: int


class WalletTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_type: TransactionType
    source: TransactionSource
    amount_paise: int
    balance_after_paise: int
    reference_id: str | None
    reference_type: str | None
    description: str
    created_at: datetime


class AdminWalletCredit(BaseModel):
    user_id: int
    amount_paise: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=500)
