"""Payment bridge between bookings and the gateway.

Order creation opens (or reuses) a gateway order for a booking's pending
online Payment row. Verification settles it: signature, authoritative
capture state and amount are checked, then the Payment, PaymentOrder,
Booking and any wallet debit are written in one transaction.

Any failure to settle marks the order and booking failed, except a repeat
callback for money already settled. Those marks are written in a separate
transaction after the settlement unit has rolled back.
"""

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from staybook.core.auth import Actor
from staybook.core.errors import (
    ConflictError,
    ForbiddenError,
    GatewayError,
    InsufficientBalanceError,
    NotFoundError,
    SignatureError,
    StayBookError,
    ValidationError,
)
from staybook.models.booking import Booking, BookingPaymentStatus, BookingStatus, PaymentMode
from staybook.models.hotel import Hotel
from staybook.models.payment import Payment, PaymentOrder, PaymentOrderStatus, PaymentStatus
from staybook.models.wallet import TransactionSource
from staybook.services import notifications
from staybook.services.booking_engine import booking_payments, ensure_hotel_staff, lock_booking
from staybook.services.notifications import NotificationQueue
from staybook.services.payment_gateway import CAPTURED, PaymentGateway
from staybook.services.pricing import TOTAL_TOLERANCE_PAISE
from staybook.services.wallet import apply_debit, get_balance

logger = logging.getLogger(__name__)

CLOSED_BOOKING_STATUSES = (BookingStatus.CANCELLED, BookingStatus.COMPLETED)

# Repeat callbacks for money that is already settled
ALREADY_SETTLED_RULES = ("already_paid", "already_processed")


@dataclass(frozen=True)
class PaymentOrderResult:
    booking_id: int
    payment_id: int
    order_id: str | None  # None when the wallet covered everything
    amount_paise: int
    wallet_amount_used_paise: int
    currency: str
    key_id: str | None
    status: PaymentOrderStatus


@dataclass(frozen=True)
class VerifyResult:
    payment_id: int
    booking_id: int
    amount_paise: int


def payment_status_for(payments: list[Payment]) -> BookingPaymentStatus:
    """completed once every row is settled, partial while some are, else pending."""
    completed = [p for p in payments if p.status == PaymentStatus.COMPLETED]
    if payments and len(completed) == len(payments):
        return BookingPaymentStatus.COMPLETED
    if completed:
        return BookingPaymentStatus.PARTIAL
    return BookingPaymentStatus.PENDING


async def refresh_payment_status(db: AsyncSession, booking: Booking) -> None:
    booking.payment_status = payment_status_for(await booking_payments(db, booking.id))


async def _lock_payment(db: AsyncSession, payment_id: int) -> Payment:
    result = await db.execute(
        select(Payment).where(Payment.id == payment_id).with_for_update().execution_options(populate_existing=True)
    )
    payment = result.scalar_one_or_none()
    if payment is None:
        raise NotFoundError(f"Payment {payment_id} not found.")
    return payment


def fails_order(exc: StayBookError) -> bool:
    """Whether a settlement error should mark the order and booking failed."""
    if isinstance(exc, (ForbiddenError, NotFoundError)):
        return False
    return not (isinstance(exc, ConflictError) and exc.rule in ALREADY_SETTLED_RULES)


async def _lock_order(db: AsyncSession, gateway_order_id: str) -> PaymentOrder | None:
    result = await db.execute(
        select(PaymentOrder)
        .where(PaymentOrder.gateway_order_id == gateway_order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


class PaymentBridge:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        queue: NotificationQueue,
        currency: str = "INR",
        order_ttl: timedelta = timedelta(minutes=15),
    ):
        self._sessions = session_factory
        self._gateway = gateway
        self._queue = queue
        self._currency = currency
        self._order_ttl = order_ttl

    # ------------------------------------------------------------------
    # Order creation
    # ------------------------------------------------------------------

    async def create_payment_order(
        self,
        actor: Actor,
        booking_id: int,
        amount_paise: int,
        wallet_amount_paise: int = 0,
    ) -> PaymentOrderResult:
        """Open a gateway order for the booking's first pending online payment.

        The wallet portion is only checked here. It is debited when the
        capture is verified.
        """
        if wallet_amount_paise < 0:
            raise ValidationError("Wallet amount cannot be negative.", rule="wallet_amount")

        async with self._sessions.begin() as db:
            booking = await lock_booking(db, booking_id)
            if booking.user_id != actor.user_id:
                raise ForbiddenError(f"Booking {booking_id} belongs to another guest.")
            if booking.status in CLOSED_BOOKING_STATUSES:
                raise ValidationError(f"Booking {booking_id} is {booking.status.value}.", rule="booking_closed")
            if booking.payment_status == BookingPaymentStatus.COMPLETED:
                raise ConflictError(f"Booking {booking_id} is already fully paid.", rule="already_paid")

            payment = next(
                (
                    p
                    for p in await booking_payments(db, booking.id)
                    if p.mode == PaymentMode.ONLINE and p.status == PaymentStatus.PENDING
                ),
                None,
            )
            if payment is None:
                raise ValidationError(f"Booking {booking_id} has no online payment due.", rule="no_online_payment")
            if abs(payment.amount_paise - amount_paise) > TOTAL_TOLERANCE_PAISE:
                raise ValidationError(
                    f"Amount {amount_paise} paise does not match the amount due of {payment.amount_paise} paise.",
                    rule="amount_mismatch",
                )
            if wallet_amount_paise > payment.amount_paise:
                raise ValidationError("Wallet amount exceeds the amount due.", rule="wallet_amount")
            if wallet_amount_paise:
                balance = await get_balance(db, actor.user_id)
                if balance < wallet_amount_paise:
                    raise InsufficientBalanceError(balance, wallet_amount_paise)

            amount_final = payment.amount_paise - wallet_amount_paise
            if amount_final == 0:
                return await self._settle_from_wallet(db, booking, payment)

            return await self._open_order(db, booking, payment, amount_final, wallet_amount_paise)

    async def _open_order(
        self,
        db: AsyncSession,
        booking: Booking,
        payment: Payment,
        amount_final: int,
        wallet_amount_paise: int,
    ) -> PaymentOrderResult:
        now = datetime.now(UTC)
        result = await db.execute(
            select(PaymentOrder).where(
                PaymentOrder.booking_id == booking.id,
                PaymentOrder.status == PaymentOrderStatus.CREATED,
            )
        )
        for existing in result.scalars().all():
            if (
                existing.is_live(now)
                and existing.payment_id == payment.id
                and existing.amount_paise == amount_final
                and existing.wallet_amount_used_paise == wallet_amount_paise
            ):
                logger.info("Reusing live order %s for booking %s", existing.gateway_order_id, booking.id)
                return self._order_result(existing)
            existing.status = PaymentOrderStatus.CANCELLED

        receipt = f"bk{booking.id}-p{payment.id}-{int(now.timestamp())}"
        remote = await self._gateway.create_order(amount_final, self._currency, receipt)
        if remote.amount_paise != amount_final:
            raise GatewayError(f"Gateway opened order {remote.id} for {remote.amount_paise} instead of {amount_final}.")

        order = PaymentOrder(
            booking_id=booking.id,
            payment_id=payment.id,
            user_id=booking.user_id,
            gateway_order_id=remote.id,
            receipt=receipt,
            currency=remote.currency,
            amount_paise=amount_final,
            original_amount_paise=payment.amount_paise,
            wallet_amount_used_paise=wallet_amount_paise,
            status=PaymentOrderStatus.CREATED,
            expires_at=now + self._order_ttl,
        )
        db.add(order)
        payment.gateway_order_id = remote.id
        await db.flush()

        logger.info("Opened order %s for booking %s: %sp", remote.id, booking.id, amount_final)
        return self._order_result(order)

    def _order_result(self, order: PaymentOrder) -> PaymentOrderResult:
        return PaymentOrderResult(
            booking_id=order.booking_id,
            payment_id=order.payment_id,
            order_id=order.gateway_order_id,
            amount_paise=order.amount_paise,
            wallet_amount_used_paise=order.wallet_amount_used_paise,
            currency=order.currency,
            key_id=self._gateway.key_id,
            status=order.status,
        )

    async def _settle_from_wallet(self, db: AsyncSession, booking: Booking, payment: Payment) -> PaymentOrderResult:
        """The wallet covers the whole amount: no gateway order, settle in this unit."""
        payment = await _lock_payment(db, payment.id)
        await apply_debit(
            db,
            booking.user_id,
            payment.amount_paise,
            TransactionSource.BOOKING_PAYMENT,
            description=f"Payment for booking #{booking.id}",
            reference_id=str(booking.id),
            reference_type="booking",
        )
        payment.status = PaymentStatus.COMPLETED
        payment.wallet_amount_used_paise = payment.amount_paise
        payment.method = "wallet"
        payment.paid_at = datetime.now(UTC)
        booking.status = BookingStatus.CONFIRMED
        await refresh_payment_status(db, booking)
        await self._queue.enqueue(db, notifications.payment_succeeded(booking, payment.amount_paise))

        logger.info("Booking %s payment %s settled from wallet: %sp", booking.id, payment.id, payment.amount_paise)
        return PaymentOrderResult(
            booking_id=booking.id,
            payment_id=payment.id,
            order_id=None,
            amount_paise=0,
            wallet_amount_used_paise=payment.amount_paise,
            currency=self._currency,
            key_id=None,
            status=PaymentOrderStatus.PAID,
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify_payment(
        self,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
        actor: Actor | None = None,
    ) -> VerifyResult:
        """Settle a gateway order after the checkout callback.

        A repeated callback for a paid order raises ConflictError and changes nothing.
        """
        try:
            async with self._sessions.begin() as db:
                order = await _lock_order(db, gateway_order_id)
                if order is None:
                    raise NotFoundError(f"Payment order {gateway_order_id} not found.")
                if actor is not None and not actor.is_admin and order.user_id != actor.user_id:
                    raise ForbiddenError(f"Payment order {gateway_order_id} belongs to another guest.")
                if order.status == PaymentOrderStatus.PAID:
                    raise ConflictError(f"Payment order {gateway_order_id} is already paid.", rule="already_paid")
                if not self._gateway.verify_payment_signature(gateway_order_id, gateway_payment_id, signature):
                    raise GatewayError("Payment signature verification failed.", rule="bad_signature")
                return await self._settle(db, order, gateway_payment_id, signature)
        except StayBookError as exc:
            if fails_order(exc):
                await self._fail_settlement(gateway_order_id, gateway_payment_id, exc)
            raise

    async def _settle(
        self,
        db: AsyncSession,
        order: PaymentOrder,
        gateway_payment_id: str,
        signature: str | None,
    ) -> VerifyResult:
        remote = await self._gateway.fetch_payment(gateway_payment_id)
        if remote.status != CAPTURED:
            raise GatewayError(f"Payment {gateway_payment_id} is {remote.status}, not captured.", rule="not_captured")
        if remote.amount_paise != order.amount_paise:
            raise GatewayError(
                f"Captured amount {remote.amount_paise} does not match order amount {order.amount_paise}.",
                rule="amount_mismatch",
            )

        payment = await _lock_payment(db, order.payment_id)
        if payment.status != PaymentStatus.PENDING:
            logger.error(
                "Capture %s for order %s arrived but payment %s is %s; needs a manual refund",
                gateway_payment_id,
                order.gateway_order_id,
                payment.id,
                payment.status.value,
            )
            raise ConflictError(f"Payment {payment.id} is already {payment.status.value}.", rule="already_processed")

        booking = await lock_booking(db, order.booking_id)
        now = datetime.now(UTC)

        if order.wallet_amount_used_paise:
            await apply_debit(
                db,
                booking.user_id,
                order.wallet_amount_used_paise,
                TransactionSource.BOOKING_PAYMENT,
                description=f"Payment for booking #{booking.id}",
                reference_id=str(booking.id),
                reference_type="booking",
            )

        payment.status = PaymentStatus.COMPLETED
        payment.gateway_order_id = order.gateway_order_id
        payment.gateway_payment_id = gateway_payment_id
        payment.gateway_signature = signature
        payment.wallet_amount_used_paise = order.wallet_amount_used_paise
        payment.method = remote.method
        payment.paid_at = now
        order.status = PaymentOrderStatus.PAID
        order.attempts += 1
        booking.status = BookingStatus.CONFIRMED
        await refresh_payment_status(db, booking)
        await self._queue.enqueue(db, notifications.payment_succeeded(booking, payment.amount_paise))
        await db.flush()

        logger.info(
            "Booking %s payment %s settled via %s: %sp",
            booking.id,
            payment.id,
            gateway_payment_id,
            payment.amount_paise,
        )
        return VerifyResult(payment_id=payment.id, booking_id=booking.id, amount_paise=payment.amount_paise)

    async def _fail_settlement(self, gateway_order_id: str, gateway_payment_id: str, exc: StayBookError) -> None:
        if not isinstance(exc, GatewayError):
            # The gateway confirmed the capture, so the guest has been charged
            logger.error(
                "Capture %s for order %s could not be settled (%s); needs a manual refund",
                gateway_payment_id,
                gateway_order_id,
                exc.rule,
            )
        await self._mark_failed(gateway_order_id, exc.message, gateway_payment_id)

    async def _mark_failed(
        self,
        gateway_order_id: str,
        reason: str,
        gateway_payment_id: str | None = None,
        open_only: bool = False,
    ) -> None:
        async with self._sessions.begin() as db:
            order = await _lock_order(db, gateway_order_id)
            if order is None or order.status == PaymentOrderStatus.PAID:
                return
            if open_only and order.status not in (PaymentOrderStatus.CREATED, PaymentOrderStatus.ATTEMPTED):
                return
            order.status = PaymentOrderStatus.FAILED
            order.attempts += 1

            booking = await lock_booking(db, order.booking_id)
            if booking.status not in (*CLOSED_BOOKING_STATUSES, BookingStatus.CHECKED_IN):
                booking.status = BookingStatus.PAYMENT_FAILED
                booking.payment_status = BookingPaymentStatus.FAILED
            await self._queue.enqueue(db, notifications.payment_failed(booking, reason))

        logger.warning(
            "Payment order %s (gateway payment %s) for booking %s failed: %s",
            gateway_order_id,
            gateway_payment_id,
            order.booking_id,
            reason,
        )

    # ------------------------------------------------------------------
    # Offline settlement and webhooks
    # ------------------------------------------------------------------

    async def record_offline_payment(self, actor: Actor, payment_id: int, method: str = "cash") -> Payment:
        """Hotel staff confirm that an offline payment was received at the property."""
        async with self._sessions.begin() as db:
            payment = await _lock_payment(db, payment_id)
            booking = await lock_booking(db, payment.booking_id)
            hotel = await db.get(Hotel, booking.hotel_id)
            ensure_hotel_staff(actor, hotel)

            if payment.mode != PaymentMode.OFFLINE:
                raise ValidationError(f"Payment {payment_id} is not an offline payment.", rule="not_offline")
            if payment.status != PaymentStatus.PENDING:
                raise ConflictError(
                    f"Payment {payment_id} is already {payment.status.value}.", rule="already_processed"
                )
            if booking.status == BookingStatus.CANCELLED:
                raise ValidationError(f"Booking {booking.id} is cancelled.", rule="booking_closed")

            payment.status = PaymentStatus.COMPLETED
            payment.method = method
            payment.paid_at = datetime.now(UTC)
            await refresh_payment_status(db, booking)
            await self._queue.enqueue(db, notifications.payment_succeeded(booking, payment.amount_paise))

        logger.info("Offline payment %s for booking %s recorded by user %s", payment_id, booking.id, actor.user_id)
        return payment

    async def handle_webhook(self, body: bytes, signature: str | None) -> str:
        """Process a gateway webhook. Returns what was done with it."""
        if not self._gateway.verify_webhook_signature(body, signature):
            raise SignatureError("Invalid webhook signature.")

        try:
            event = json.loads(body)
            entity = event["payload"]["payment"]["entity"]
            event_type = event["event"]
            gateway_order_id = entity["order_id"]
            gateway_payment_id = entity["id"]
        except (ValueError, KeyError, TypeError) as exc:
            raise ValidationError(f"Malformed webhook payload: {exc}", rule="webhook_payload") from exc

        if event_type == "payment.failed":
            reason = entity.get("error_description") or "Payment failed at the gateway."
            await self._mark_failed(gateway_order_id, reason, gateway_payment_id, open_only=True)
            return "failed"

        if event_type == "payment.captured":
            try:
                async with self._sessions.begin() as db:
                    order = await _lock_order(db, gateway_order_id)
                    if order is None or order.status == PaymentOrderStatus.PAID:
                        return "ignored"
                    await self._settle(db, order, gateway_payment_id, None)
            except StayBookError as exc:
                if not fails_order(exc):
                    return "ignored"
                await self._fail_settlement(gateway_order_id, gateway_payment_id, exc)
                if isinstance(exc, GatewayError):
                    raise
                return "failed"
            return "captured"

        logger.info("Ignoring webhook event %s", event_type)
        return "ignored"
