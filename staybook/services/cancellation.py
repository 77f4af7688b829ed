"""Cancellation and refund resolution.

A booking with money already collected is not cancelled outright: it gets a
pending Refund that an admin later processes (wallet or gateway) or rejects.
A booking with nothing collected is cancelled directly.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from staybook.core.auth import SYSTEM_ACTOR, Actor
from staybook.core.errors import (
    ConflictError,
    ForbiddenError,
    GatewayError,
    NotFoundError,
    StayBookError,
    ValidationError,
)
from staybook.models.booking import Booking, BookingPaymentStatus, BookingStatus
from staybook.models.hotel import Hotel
from staybook.models.payment import Payment, PaymentOrder, PaymentOrderStatus, PaymentStatus
from staybook.models.refund import Refund, RefundMethod, RefundStatus, RefundType
from staybook.models.user import UserRole
from staybook.models.wallet import TransactionSource
from staybook.services import notifications
from staybook.services.booking_engine import booking_payments, ensure_can_act, lock_booking
from staybook.services.notifications import NotificationQueue
from staybook.services.payment_gateway import PaymentGateway
from staybook.services.wallet import apply_credit

logger = logging.getLogger(__name__)


@dataclass
class CancellationResult:
    booking: Booking
    refund: Refund | None = None


def cancellation_fee(
    amount_paise: int,
    hotel: Hotel,
    booking: Booking,
    actor: Actor,
    refund_type: RefundType,
    now: datetime,
) -> int:
    """Fee kept from a refund.

    No-shows always pay it. A guest pays it when cancelling inside the hotel's
    window before check-in. Hotel and admin cancellations never do.
    """
    if refund_type != RefundType.NO_SHOW:
        if actor.role != UserRole.GUEST:
            return 0
        if booking.check_in - now > timedelta(hours=hotel.cancellation_window_hours):
            return 0
    return (amount_paise * hotel.cancellation_fee_percent + 50) // 100


async def _cancel_live_orders(db: AsyncSession, booking_id: int) -> None:
    result = await db.execute(
        select(PaymentOrder).where(
            PaymentOrder.booking_id == booking_id,
            PaymentOrder.status.in_((PaymentOrderStatus.CREATED, PaymentOrderStatus.ATTEMPTED)),
        )
    )
    for order in result.scalars().all():
        order.status = PaymentOrderStatus.CANCELLED


async def _lock_refund(db: AsyncSession, refund_id: int) -> Refund:
    result = await db.execute(
        select(Refund).where(Refund.id == refund_id).with_for_update().execution_options(populate_existing=True)
    )
    refund = result.scalar_one_or_none()
    if refund is None:
        raise NotFoundError(f"Refund {refund_id} not found.")
    return refund


def _ensure_open(refund: Refund) -> None:
    if refund.status not in (RefundStatus.PENDING, RefundStatus.FAILED):
        raise ConflictError(f"Refund {refund.id} is already {refund.status.value}.", rule="refund_closed")


def gateway_refund_plan(refund: Refund, payments: list[Payment]) -> list[tuple[Payment, int]]:
    """Split a refund across gateway-captured payments, oldest first.

    The split only depends on the refund amount and the payments, so a retry
    sees the same amounts per payment.
    """
    remaining = refund.refund_amount_paise
    plan = []
    for payment in sorted(payments, key=lambda p: p.id):
        if remaining <= 0:
            break
        if not payment.gateway_payment_id:
            continue
        amount = min(remaining, payment.amount_paise - payment.wallet_amount_used_paise)
        if amount > 0:
            plan.append((payment, amount))
            remaining -= amount
    return plan


async def _refunding_payments(db: AsyncSession, booking_id: int) -> list[Payment]:
    return [p for p in await booking_payments(db, booking_id) if p.status == PaymentStatus.REFUND]


class CancellationResolver:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        queue: NotificationQueue,
        no_show_buffer: timedelta = timedelta(minutes=60),
    ):
        self._sessions = session_factory
        self._gateway = gateway
        self._queue = queue
        self._no_show_buffer = no_show_buffer

    async def cancel_booking(
        self,
        actor: Actor,
        booking_id: int,
        reason: str | None = None,
        refund_type: RefundType = RefundType.CANCELLATION,
    ) -> CancellationResult:
        """Cancel a booking, or open a refund request if anything was paid."""
        now = datetime.now(UTC)
        async with self._sessions.begin() as db:
            booking = await lock_booking(db, booking_id)
            hotel = await db.get(Hotel, booking.hotel_id)
            ensure_can_act(actor, booking, hotel)

            if booking.status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED):
                raise ValidationError(f"Booking {booking_id} is already {booking.status.value}.", rule="booking_closed")

            pending_refund = await db.scalar(
                select(Refund.id).where(Refund.booking_id == booking_id, Refund.status == RefundStatus.PENDING)
            )
            if pending_refund is not None:
                raise ConflictError(f"Booking {booking_id} already has a pending refund.", rule="refund_pending")

            payments = await booking_payments(db, booking_id)
            completed = [p for p in payments if p.status == PaymentStatus.COMPLETED]

            if completed:
                refund = self._request_refund(booking, hotel, actor, completed, reason, refund_type, now)
                db.add(refund)
                await db.flush()
                await self._queue.enqueue(db, notifications.refund_requested(refund))
                result = CancellationResult(booking, refund)
            else:
                booking.status = BookingStatus.CANCELLED
                booking.cancelled_by = actor.role.value
                booking.cancelled_at = now
                booking.cancellation_reason = reason
                for payment in payments:
                    if payment.status == PaymentStatus.PENDING:
                        payment.status = PaymentStatus.CANCELLED
                await _cancel_live_orders(db, booking_id)
                await self._queue.enqueue(db, notifications.booking_cancelled(booking))
                result = CancellationResult(booking)

        if result.refund is not None:
            logger.info(
                "Booking %s: refund %s requested by %s for %sp (fee %sp)",
                booking_id,
                result.refund.id,
                actor.role.value,
                result.refund.refund_amount_paise,
                result.refund.cancellation_fee_paise,
            )
        else:
            logger.info("Booking %s cancelled by %s %s", booking_id, actor.role.value, actor.user_id)
        return result

    def _request_refund(
        self,
        booking: Booking,
        hotel: Hotel,
        actor: Actor,
        completed: list[Payment],
        reason: str | None,
        refund_type: RefundType,
        now: datetime,
    ) -> Refund:
        paid = sum(p.amount_paise for p in completed)
        fee = cancellation_fee(paid, hotel, booking, actor, refund_type, now)
        newest = max(completed, key=lambda p: (p.paid_at or p.created_at, p.id))
        for payment in completed:
            payment.status = PaymentStatus.REFUND

        return Refund(
            booking_id=booking.id,
            original_payment_id=newest.id,
            user_id=booking.user_id,
            refund_type=refund_type,
            status=RefundStatus.PENDING,
            original_amount_paise=paid,
            cancellation_fee_paise=fee,
            refund_amount_paise=paid - fee,
            reason=reason,
            requested_by=actor.role.value,
        )

    # ------------------------------------------------------------------
    # Admin resolution
    # ------------------------------------------------------------------

    async def process_refund(self, actor: Actor, refund_id: int, method: RefundMethod) -> Refund:
        """Pay a pending refund out and close the booking.

        Gateway refunds are sent and recorded one payment at a time before the
        closing transaction, so a retry never refunds the same payment twice.
        """
        if not actor.is_admin:
            raise ForbiddenError("Only admins can process refunds.")

        try:
            if method == RefundMethod.GATEWAY:
                await self._send_gateway_refunds(refund_id)

            async with self._sessions.begin() as db:
                refund = await _lock_refund(db, refund_id)
                _ensure_open(refund)

                booking = await lock_booking(db, refund.booking_id)
                payments = await _refunding_payments(db, booking.id)

                sent = [(p, amount) for p, amount in gateway_refund_plan(refund, payments) if p.gateway_refund_id]
                if sent:
                    refund.gateway_refund_id = ",".join(p.gateway_refund_id for p, _ in sent)
                wallet_paise = refund.refund_amount_paise - sum(amount for _, amount in sent)
                if wallet_paise > 0:
                    await self._refund_to_wallet(db, refund, wallet_paise)

                now = datetime.now(UTC)
                refund.status = RefundStatus.PROCESSED
                refund.refund_method = method
                refund.processed_by = actor.user_id
                refund.processed_at = now
                refund.failure_reason = None
                for payment in payments:
                    payment.status = PaymentStatus.REFUND_COMPLETED

                booking.status = BookingStatus.CANCELLED
                booking.payment_status = BookingPaymentStatus.REFUNDED
                booking.cancelled_by = refund.requested_by
                booking.cancelled_at = now
                booking.cancellation_reason = refund.reason
                await _cancel_live_orders(db, booking.id)
                await self._queue.enqueue(db, notifications.refund_processed(refund))
        except GatewayError as exc:
            await self._mark_refund_failed(refund_id, exc.message)
            raise

        logger.info("Refund %s processed by admin %s via %s", refund_id, actor.user_id, method.value)
        return refund

    async def _refund_to_wallet(self, db: AsyncSession, refund: Refund, amount_paise: int) -> None:
        await apply_credit(
            db,
            refund.user_id,
            amount_paise,
            TransactionSource.REFUND,
            description=f"Refund for booking #{refund.booking_id}",
            reference_id=str(refund.id),
            reference_type="refund",
        )

    async def _send_gateway_refunds(self, refund_id: int) -> None:
        """Refund the card/UPI-captured part through the gateway. The wallet part is credited on close."""
        async with self._sessions.begin() as db:
            refund = await _lock_refund(db, refund_id)
            _ensure_open(refund)
            plan = gateway_refund_plan(refund, await _refunding_payments(db, refund.booking_id))

        for payment, amount_paise in plan:
            if payment.gateway_refund_id:
                continue
            remote = await self._gateway.refund(payment.gateway_payment_id, amount_paise)
            async with self._sessions.begin() as db:
                stored = await db.get(Payment, payment.id, with_for_update=True)
                stored.gateway_refund_id = remote.id
            logger.info(
                "Refund %s: gateway refund %s for payment %s: %sp", refund_id, remote.id, payment.id, amount_paise
            )

    async def _mark_refund_failed(self, refund_id: int, reason: str) -> None:
        async with self._sessions.begin() as db:
            refund = await _lock_refund(db, refund_id)
            refund.status = RefundStatus.FAILED
            refund.failure_reason = reason
        logger.warning("Refund %s failed at the gateway: %s", refund_id, reason)

    async def reject_refund(self, actor: Actor, refund_id: int, reason: str) -> Refund:
        """Decline a refund request. The booking keeps its payments and stays as it was."""
        if not actor.is_admin:
            raise ForbiddenError("Only admins can reject refunds.")

        async with self._sessions.begin() as db:
            refund = await _lock_refund(db, refund_id)
            _ensure_open(refund)

            payments = await _refunding_payments(db, refund.booking_id)
            if any(p.gateway_refund_id for p in payments):
                raise ConflictError(
                    f"Refund {refund_id} has already been partly paid out by the gateway.", rule="refund_in_progress"
                )

            refund.status = RefundStatus.REJECTED
            refund.rejection_reason = reason
            refund.processed_by = actor.user_id
            refund.processed_at = datetime.now(UTC)
            for payment in payments:
                payment.status = PaymentStatus.COMPLETED
            await self._queue.enqueue(db, notifications.refund_rejected(refund))

        logger.info("Refund %s rejected by admin %s", refund_id, actor.user_id)
        return refund

    async def list_refunds(
        self,
        actor: Actor,
        status: RefundStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Refund]:
        query = select(Refund)
        if actor.role == UserRole.GUEST:
            query = query.where(Refund.user_id == actor.user_id)
        elif actor.role == UserRole.HOTEL:
            query = (
                query.join(Booking, Booking.id == Refund.booking_id)
                .join(Hotel, Hotel.id == Booking.hotel_id)
                .where(Hotel.owner_id == actor.user_id)
            )
        if status is not None:
            query = query.where(Refund.status == status)
        query = query.order_by(Refund.id.desc()).limit(limit).offset(offset)

        async with self._sessions() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Scheduled sweep
    # ------------------------------------------------------------------

    async def cancel_no_shows(self, now: datetime | None = None) -> int:
        """Resolve confirmed bookings whose guest never checked in. Returns how many were handled."""
        now = now or datetime.now(UTC)
        cutoff = now - self._no_show_buffer

        async with self._sessions() as db:
            result = await db.execute(
                select(Booking.id)
                .where(
                    Booking.status == BookingStatus.CONFIRMED,
                    Booking.check_in < cutoff,
                    ~exists().where(Refund.booking_id == Booking.id, Refund.status == RefundStatus.PENDING),
                )
                .order_by(Booking.check_in)
            )
            booking_ids = list(result.scalars().all())

        handled = 0
        for booking_id in booking_ids:
            try:
                await self.cancel_booking(SYSTEM_ACTOR, booking_id, reason="No-show", refund_type=RefundType.NO_SHOW)
            except StayBookError as exc:
                logger.warning("No-show sweep skipped booking %s: %s", booking_id, exc.message)
                continue
            handled += 1

        if handled:
            logger.info("No-show sweep resolved %s bookings", handled)
        return handled
