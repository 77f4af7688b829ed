"""Hotel catalog models.

Hotel = a property listed on the marketplace, owned by a hotel operator.
Room = an individual bookable room at a hotel.
RoomHourlyStay = a fixed-price hourly package offered by a room (e.g. 3h, 6h).
Addon = an optional extra sold with a booking (breakfast, airport pickup).

Catalog CRUD lives elsewhere; the booking core only reads these rows.
"""

import enum

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from staybook.models.base import Base, JSONType, TimestampMixin, str_enum


class RoomStatus(enum.StrEnum):
    AVAILABLE = "available"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"


class Hotel(TimestampMixin, Base):
    __tablename__ = "hotels"

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    city: Mapped[str | None] = mapped_column(String(100))
    address: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Which payment modes the property accepts
    supports_online_payment: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    supports_offline_payment: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Cancellation policy: a guest cancelling within the window pays the fee
    cancellation_fee_percent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancellation_window_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)

    config: Mapped[dict | None] = mapped_column(JSONType, default=dict)

    def __repr__(self) -> str:
        return f"<Hotel {self.name}>"


class Room(TimestampMixin, Base):
    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(primary_key=True)
    hotel_id: Mapped[int] = mapped_column(ForeignKey("hotels.id"), nullable=False)
    room_type_id: Mapped[int | None] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    status: Mapped[RoomStatus] = mapped_column(
        str_enum(RoomStatus, "room_status"), default=RoomStatus.AVAILABLE, nullable=False
    )

    # Pricing (paise)
    price_per_night_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    supports_daily: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    supports_hourly: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (Index("ix_rooms_hotel", "hotel_id"),)

    def __repr__(self) -> str:
        return f"<Room {self.name} @ hotel {self.hotel_id}>"


class RoomHourlyStay(TimestampMixin, Base):
    __tablename__ = "room_hourly_stays"

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id"), nullable=False)
    hours: Mapped[int] = mapped_column(Integer, nullable=False)
    price_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("ix_hourly_room_hours", "room_id", "hours", unique=True),)

    def __repr__(self) -> str:
        return f"<RoomHourlyStay {self.hours}h room={self.room_id}>"


class Addon(TimestampMixin, Base):
    __tablename__ = "addons"

    id: Mapped[int] = mapped_column(primary_key=True)
    hotel_id: Mapped[int] = mapped_column(ForeignKey("hotels.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Addon {self.name} @ hotel {self.hotel_id}>"
