"""Room availability.

The checker is advisory: it reads without locks. The booking engine repeats
``find_conflict`` inside its transaction after locking the room row, and that
second check is the one that counts.
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from staybook.models.booking import Booking, BookingStatus, BookingType
from staybook.models.hotel import Room, RoomStatus
from staybook.services.pricing import load_stay, validate_interval


@dataclass(frozen=True)
class Availability:
    available: bool
    reason: str | None = None


def check_room_fit(room: Room, guest_count: int, booking_type: BookingType) -> str | None:
    """Static checks against the room itself. Returns a reason or None."""
    if room.status != RoomStatus.AVAILABLE:
        return f"Room is {room.status.value}."
    if guest_count < 1:
        return "At least one guest is required."
    if guest_count > room.capacity:
        return f"Room holds at most {room.capacity} guests."
    if booking_type == BookingType.DAILY and not room.supports_daily:
        return "Room does not offer daily stays."
    if booking_type == BookingType.HOURLY and not room.supports_hourly:
        return "Room does not offer hourly stays."
    return None


async def find_conflict(
    db: AsyncSession,
    room_id: int,
    check_in: datetime,
    check_out: datetime,
    exclude_booking_id: int | None = None,
) -> Booking | None:
    """First non-cancelled booking that overlaps [check_in, check_out)."""
    query = select(Booking).where(
        Booking.room_id == room_id,
        Booking.status != BookingStatus.CANCELLED,
        Booking.check_in < check_out,
        Booking.check_out > check_in,
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)
    result = await db.execute(query.order_by(Booking.check_in).limit(1))
    return result.scalar_one_or_none()


def conflict_reason(conflict: Booking) -> str:
    return (
        f"Room already booked from {conflict.check_in:%Y-%m-%d %H:%M} "
        f"to {conflict.check_out:%Y-%m-%d %H:%M}."
    )


class AvailabilityChecker:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def check_availability(
        self,
        room_id: int,
        check_in: datetime,
        check_out: datetime,
        guest_count: int,
        booking_type: BookingType,
    ) -> Availability:
        validate_interval(check_in, check_out)
        async with self._sessions() as db:
            stay = await load_stay(db, room_id)
            reason = check_room_fit(stay.room, guest_count, booking_type)
            if reason:
                return Availability(False, reason)

            conflict = await find_conflict(db, room_id, check_in, check_out)
            if conflict is not None:
                return Availability(False, conflict_reason(conflict))
        return Availability(True)
