"""Seed the database with demo hotels, rooms, coupons and users.

Run with: python -m scripts.seed
Creates two hotels with rooms, hourly packages and addons, a welcome coupon,
and guest / hotel owner / admin users. Prints an access token for each user.
"""

import asyncio
from datetime import UTC, datetime, timedelta

from sqlalchemy import select

from staybook.core.auth import create_access_token
from staybook.core.config import get_settings
from staybook.core.database import build_engine, build_session_factory
from staybook.models import (
    Addon,
    Base,
    Coupon,
    DiscountType,
    Hotel,
    Room,
    RoomHourlyStay,
    User,
    UserRole,
)

# Prices in paise
HOTELS = [
    {
        "name": "Seaview Residency",
        "city": "Goa",
        "address": "Calangute Beach Road, North Goa",
        "cancellation_fee_percent": 20,
        "cancellation_window_hours": 48,
        "rooms": [
            {"name": "101 Deluxe", "room_type_id": 1, "capacity": 2, "price_per_night_paise": 350000},
            {"name": "102 Deluxe", "room_type_id": 1, "capacity": 2, "price_per_night_paise": 350000},
            {"name": "201 Family Suite", "room_type_id": 2, "capacity": 4, "price_per_night_paise": 620000},
        ],
        "addons": [
            {"name": "Breakfast buffet", "price_paise": 45000},
            {"name": "Airport pickup", "price_paise": 150000},
        ],
    },
    {
        "name": "Transit Inn Andheri",
        "city": "Mumbai",
        "address": "Sahar Road, near T2, Andheri East",
        "cancellation_fee_percent": 10,
        "cancellation_window_hours": 12,
        "supports_offline_payment": False,
        "rooms": [
            {
                "name": "Standard 12",
                "room_type_id": 3,
                "capacity": 2,
                "price_per_night_paise": 280000,
                "supports_hourly": True,
                "hourly": [(3, 120000), (6, 180000), (12, 240000)],
            },
            {
                "name": "Standard 14",
                "room_type_id": 3,
                "capacity": 2,
                "price_per_night_paise": 280000,
                "supports_hourly": True,
                "hourly": [(3, 120000), (6, 180000)],
            },
        ],
        "addons": [{"name": "Late checkout", "price_paise": 50000}],
    },
]

USERS = [
    {"email": "admin@staybook.in", "name": "Platform Admin", "role": UserRole.ADMIN},
    {"email": "owner@seaview.example", "name": "Seaview Owner", "role": UserRole.HOTEL},
    {"email": "owner@transitinn.example", "name": "Transit Inn Owner", "role": UserRole.HOTEL},
    {"email": "guest@example.com", "name": "Test Guest", "role": UserRole.GUEST, "phone": "+919800000000"},
]


async def seed():
    settings = get_settings()
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)

    # Create tables (in dev; production uses Alembic migrations)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_factory() as db:
        # Check if already seeded
        result = await db.execute(select(User).where(User.email == "admin@staybook.in"))
        if result.scalar_one_or_none():
            print("Database already seeded, skipping.")
            await engine.dispose()
            return

        users = {}
        for user_data in USERS:
            user = User(**user_data)
            db.add(user)
            await db.flush()
            users[user.email] = user

        owners = [users["owner@seaview.example"], users["owner@transitinn.example"]]
        total_rooms = 0
        for owner, hotel_data in zip(owners, HOTELS, strict=True):
            rooms = hotel_data.pop("rooms")
            addons = hotel_data.pop("addons")
            hotel = Hotel(owner_id=owner.id, **hotel_data)
            db.add(hotel)
            await db.flush()

            for room_data in rooms:
                hourly = room_data.pop("hourly", [])
                room = Room(hotel_id=hotel.id, **room_data)
                db.add(room)
                await db.flush()
                total_rooms += 1
                for hours, price in hourly:
                    db.add(RoomHourlyStay(room_id=room.id, hours=hours, price_paise=price))

            for addon_data in addons:
                db.add(Addon(hotel_id=hotel.id, **addon_data))

        now = datetime.now(UTC)
        db.add(
            Coupon(
                code="WELCOME10",
                description="10% off your first stay, up to ₹500",
                discount_type=DiscountType.PERCENTAGE,
                discount_value=10,
                max_discount_paise=50000,
                min_order_paise=100000,
                valid_from=now,
                valid_to=now + timedelta(days=365),
                usage_limit=1000,
                per_user_limit=1,
            )
        )

        await db.commit()

    await engine.dispose()

    print(f"Seeded: {len(HOTELS)} hotels, {total_rooms} rooms, 1 coupon (WELCOME10)")
    print(f"  {len(USERS)} users with access tokens:")
    for user in users.values():
        print(f"    {user.email} [{user.role.value}]")
        print(f"      {create_access_token(settings, user.id, user.role)}")


if __name__ == "__main__":
    asyncio.run(seed())
