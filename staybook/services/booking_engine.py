"""Booking transaction engine.

create_booking runs in two phases:

1. Validation, no locks: load hotel and room, check payment-mode support,
   room fit, price (including the coupon) and the submitted total.
2. One atomic unit: lock the room row, re-check overlap, insert the booking,
   its payment shell(s), addon lines and coupon usage, and queue the
   confirmation notifications in the outbox.

Any failure in phase 1 aborts before a write. Any failure in phase 2 rolls
the whole unit back, so a partially written booking is never visible.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from staybook.core.auth import Actor
from staybook.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from staybook.models.booking import (
    Booking,
    BookingAddon,
    BookingPaymentStatus,
    BookingStatus,
    BookingType,
    PaymentMode,
)
from staybook.models.hotel import Hotel, Room
from staybook.models.payment import Payment, PaymentStatus, PaymentType
from staybook.models.user import UserRole
from staybook.services import notifications
from staybook.services.availability import check_room_fit, conflict_reason, find_conflict
from staybook.services.coupons import redeem_coupon
from staybook.services.notifications import NotificationQueue
from staybook.services.pricing import AddonRequest, PriceBreakdown, PricingService, check_submitted_total, load_stay

logger = logging.getLogger(__name__)

# Allowed manual status transitions (hotel owner or admin)
STATUS_TRANSITIONS = {
    BookingStatus.CONFIRMED: {BookingStatus.CHECKED_IN},
    BookingStatus.CHECKED_IN: {BookingStatus.COMPLETED},
}


@dataclass(frozen=True)
class BookingRequest:
    room_id: int
    check_in: datetime
    check_out: datetime
    booking_type: BookingType
    guest_count: int
    payment_mode: PaymentMode
    total_amount_paise: int
    advance_amount_paise: int = 0
    addons: Sequence[AddonRequest] = ()
    coupon_code: str | None = None
    special_requests: str | None = None


@dataclass
class BookingDetail:
    booking: Booking
    payments: list[Payment] = field(default_factory=list)
    addons: list[BookingAddon] = field(default_factory=list)


@dataclass(frozen=True)
class PaymentShell:
    payment_type: PaymentType
    mode: PaymentMode
    amount_paise: int


def plan_payment_shells(mode: PaymentMode, total_paise: int, advance_paise: int) -> list[PaymentShell]:
    """The pending Payment rows a new booking starts with.

    Online: one full online row. Offline: one full offline row, or, with an
    advance, an online advance row plus an offline row for the rest.
    """
    if mode == PaymentMode.ONLINE:
        if advance_paise:
            raise ValidationError("Advance payments only apply to offline bookings.", rule="advance")
        return [PaymentShell(PaymentType.FULL, PaymentMode.ONLINE, total_paise)]

    if not advance_paise:
        return [PaymentShell(PaymentType.FULL, PaymentMode.OFFLINE, total_paise)]

    if not 0 < advance_paise < total_paise:
        raise ValidationError(
            f"Advance must be between 0 and the total of {total_paise} paise, got {advance_paise}.", rule="advance"
        )
    return [
        PaymentShell(PaymentType.ADVANCE, PaymentMode.ONLINE, advance_paise),
        PaymentShell(PaymentType.REMAINING, PaymentMode.OFFLINE, total_paise - advance_paise),
    ]


def check_payment_mode(hotel: Hotel, mode: PaymentMode, advance_paise: int) -> None:
    if mode == PaymentMode.ONLINE and not hotel.supports_online_payment:
        raise ValidationError(f"{hotel.name} does not accept online payment.", rule="payment_mode")
    if mode == PaymentMode.OFFLINE and not hotel.supports_offline_payment:
        raise ValidationError(f"{hotel.name} does not accept pay-at-hotel bookings.", rule="payment_mode")
    if mode == PaymentMode.OFFLINE and advance_paise and not hotel.supports_online_payment:
        raise ValidationError(f"{hotel.name} cannot take an online advance.", rule="payment_mode")


def ensure_can_act(actor: Actor, booking: Booking, hotel: Hotel) -> None:
    """Guests act on their own bookings, hotel owners on their hotels' bookings, admins on all."""
    if actor.role in (UserRole.ADMIN, UserRole.SYSTEM):
        return
    if actor.role == UserRole.GUEST and booking.user_id == actor.user_id:
        return
    if actor.role == UserRole.HOTEL and hotel.owner_id == actor.user_id:
        return
    raise ForbiddenError(f"You cannot act on booking {booking.id}.")


def ensure_hotel_staff(actor: Actor, hotel: Hotel) -> None:
    if actor.is_admin or actor.role == UserRole.SYSTEM:
        return
    if actor.role == UserRole.HOTEL and hotel.owner_id == actor.user_id:
        return
    raise ForbiddenError("Only the hotel owner or an admin can do this.")


async def lock_booking(db: AsyncSession, booking_id: int) -> Booking:
    """SELECT ... FOR UPDATE on the booking row, or raise NotFoundError."""
    result = await db.execute(
        select(Booking).where(Booking.id == booking_id).with_for_update().execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found.")
    return booking


async def booking_payments(db: AsyncSession, booking_id: int) -> list[Payment]:
    result = await db.execute(select(Payment).where(Payment.booking_id == booking_id).order_by(Payment.id))
    return list(result.scalars().all())


class BookingEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        pricing: PricingService,
        queue: NotificationQueue,
    ):
        self._sessions = session_factory
        self._pricing = pricing
        self._queue = queue

    async def create_booking(self, actor: Actor, request: BookingRequest) -> BookingDetail:
        if request.check_in <= datetime.now(UTC):
            raise ValidationError("Cannot book a stay that starts in the past.", rule="past_booking")

        # Phase 1: validate without locks
        async with self._sessions() as db:
            stay = await load_stay(db, request.room_id)
            check_payment_mode(stay.hotel, request.payment_mode, request.advance_amount_paise)
            reason = check_room_fit(stay.room, request.guest_count, request.booking_type)
            if reason:
                raise ValidationError(reason, rule="room_fit")

            price = await self._pricing.quote(
                db,
                stay,
                request.check_in,
                request.check_out,
                request.booking_type,
                request.addons,
                request.coupon_code,
                actor.user_id,
            )
            check_submitted_total(price.total_paise, request.total_amount_paise)
            shells = plan_payment_shells(request.payment_mode, price.total_paise, request.advance_amount_paise)

            conflict = await find_conflict(db, request.room_id, request.check_in, request.check_out)
            if conflict is not None:
                raise ConflictError(conflict_reason(conflict), rule="room_conflict")

        # Phase 2: one atomic unit
        async with self._sessions.begin() as db:
            detail = await self._write_booking(db, actor, request, price, shells, stay.hotel)

        logger.info(
            "Booking %s created: room=%s user=%s total=%sp mode=%s",
            detail.booking.id,
            request.room_id,
            actor.user_id,
            price.total_paise,
            request.payment_mode.value,
        )
        return detail

    async def _write_booking(
        self,
        db: AsyncSession,
        actor: Actor,
        request: BookingRequest,
        price: PriceBreakdown,
        shells: list[PaymentShell],
        hotel: Hotel,
    ) -> BookingDetail:
        # Serialize bookings for this room, then re-check under the lock
        await db.execute(select(Room.id).where(Room.id == request.room_id).with_for_update())
        conflict = await find_conflict(db, request.room_id, request.check_in, request.check_out)
        if conflict is not None:
            raise ConflictError(conflict_reason(conflict), rule="room_conflict")

        advance = next((s.amount_paise for s in shells if s.payment_type == PaymentType.ADVANCE), 0)
        booking = Booking(
            user_id=actor.user_id,
            hotel_id=hotel.id,
            room_id=request.room_id,
            check_in=request.check_in,
            check_out=request.check_out,
            booking_type=request.booking_type,
            guest_count=request.guest_count,
            status=BookingStatus.CONFIRMED,
            payment_status=BookingPaymentStatus.PENDING,
            payment_mode=request.payment_mode,
            total_amount_paise=price.total_paise,
            advance_amount_paise=advance,
            remaining_amount_paise=price.total_paise - advance,
            coupon_discount_paise=price.discount_paise,
            special_requests=request.special_requests,
            price_breakdown=price.as_dict(),
        )
        db.add(booking)
        await db.flush()

        payments = [
            Payment(
                booking_id=booking.id,
                user_id=actor.user_id,
                amount_paise=shell.amount_paise,
                payment_type=shell.payment_type,
                mode=shell.mode,
                status=PaymentStatus.PENDING,
            )
            for shell in shells
        ]
        addons = [
            BookingAddon(
                booking_id=booking.id,
                addon_id=line.addon_id,
                name=line.name,
                unit_price_paise=line.unit_price_paise,
                quantity=line.quantity,
                total_paise=line.total_paise,
            )
            for line in price.addon_lines
        ]
        db.add_all(payments + addons)

        if price.coupon is not None:
            await redeem_coupon(db, price.coupon, booking.id, actor.user_id)

        await self._queue.enqueue(db, notifications.booking_confirmed(booking, hotel.name))
        await self._queue.enqueue(db, notifications.new_booking_for_hotel(booking, hotel.owner_id))
        await db.flush()
        return BookingDetail(booking, payments, addons)

    async def get_booking(self, actor: Actor, booking_id: int) -> BookingDetail:
        async with self._sessions() as db:
            booking = await db.get(Booking, booking_id)
            if booking is None:
                raise NotFoundError(f"Booking {booking_id} not found.")
            hotel = await db.get(Hotel, booking.hotel_id)
            ensure_can_act(actor, booking, hotel)

            payments = await booking_payments(db, booking.id)
            result = await db.execute(select(BookingAddon).where(BookingAddon.booking_id == booking.id))
            return BookingDetail(booking, payments, list(result.scalars().all()))

    async def list_bookings(
        self,
        actor: Actor,
        status: BookingStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Booking]:
        """Guests see their own bookings, hotel owners their hotels' bookings, admins everything."""
        query = select(Booking)
        if actor.role == UserRole.GUEST:
            query = query.where(Booking.user_id == actor.user_id)
        elif actor.role == UserRole.HOTEL:
            query = query.join(Hotel, Hotel.id == Booking.hotel_id).where(Hotel.owner_id == actor.user_id)
        if status is not None:
            query = query.where(Booking.status == status)
        query = query.order_by(Booking.check_in.desc()).limit(limit).offset(offset)

        async with self._sessions() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def update_status(self, actor: Actor, booking_id: int, new_status: BookingStatus) -> Booking:
        """Move a booking through check-in and completion."""
        async with self._sessions.begin() as db:
            booking = await lock_booking(db, booking_id)
            hotel = await db.get(Hotel, booking.hotel_id)
            ensure_hotel_staff(actor, hotel)

            if new_status not in STATUS_TRANSITIONS.get(booking.status, set()):
                raise ValidationError(
                    f"Cannot move booking {booking.id} from {booking.status.value} to {new_status.value}.",
                    rule="status_transition",
                )
            booking.status = new_status

        logger.info("Booking %s moved to %s by user %s", booking.id, new_status.value, actor.user_id)
        return booking
