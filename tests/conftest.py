"""Shared test fixtures.

Each test gets its own SQLite file, tables built from model metadata, and a
fake payment gateway in place of Razorpay.
"""

import hashlib
import hmac
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient

from staybook.core.auth import Actor, create_access_token
from staybook.core.config import Settings
from staybook.core.container import build_services
from staybook.core.database import build_engine, build_session_factory
from staybook.core.errors import GatewayError
from staybook.main import create_app
from staybook.models import (
    Addon,
    Base,
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    BookingType,
    Hotel,
    Payment,
    PaymentMode,
    PaymentStatus,
    PaymentType,
    Room,
    RoomHourlyStay,
    User,
    UserRole,
)
from staybook.services.payment_gateway import GatewayOrder, GatewayPayment, GatewayRefund

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "whsec_test"


class FakeGateway:
    """In-memory stand-in for Razorpay. Tests decide what a payment fetch returns."""

    key_id = "rzp_test_key"

    def __init__(self):
        self.orders: dict[str, GatewayOrder] = {}
        self.payments: dict[str, GatewayPayment] = {}
        self.refunds: list[tuple[str, int]] = []
        self.fail_refunds = False

    async def create_order(self, amount_paise: int, currency: str, receipt: str) -> GatewayOrder:
        order = GatewayOrder(id=f"order_{len(self.orders) + 1}", amount_paise=amount_paise, currency=currency)
        self.orders[order.id] = order
        return order

    def capture(self, payment_id: str, amount_paise: int, status: str = "captured", method: str = "upi") -> None:
        self.payments[payment_id] = GatewayPayment(payment_id, status, amount_paise, method, None)

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        if payment_id not in self.payments:
            raise GatewayError(f"Payment {payment_id} not found at the gateway.")
        return self.payments[payment_id]

    async def refund(self, payment_id: str, amount_paise: int) -> GatewayRefund:
        if self.fail_refunds:
            raise GatewayError("Refund declined by the gateway.")
        self.refunds.append((payment_id, amount_paise))
        return GatewayRefund(id=f"rfnd_{len(self.refunds)}", amount_paise=amount_paise)

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return hmac.compare_digest(sign(order_id, payment_id), signature or "")

    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool:
        return bool(signature) and hmac.compare_digest(sign_webhook(body), signature)


def _hmac(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def sign(order_id: str, payment_id: str) -> str:
    """Checkout signature the way Razorpay computes it: HMAC-SHA256 of "order_id|payment_id"."""
    return _hmac(KEY_SECRET, f"{order_id}|{payment_id}".encode())


def sign_webhook(body: bytes) -> str:
    return _hmac(WEBHOOK_SECRET, body)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path}/test.db",
        secret_key="test-secret",
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        tax_percent=10.0,
        platform_fee_paise=5000,
        log_level="WARNING",
    )


@pytest.fixture
async def engine(settings):
    engine = build_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def services(settings, session_factory, gateway):
    return build_services(settings, session_factory, gateway=gateway)


@pytest.fixture
async def world(session_factory):
    """A hotel with two rooms, an addon, hourly packages, two guests, an owner and an admin."""
    async with session_factory.begin() as db:
        guest = User(email="guest@example.com", name="Asha Guest", role=UserRole.GUEST)
        other_guest = User(email="other@example.com", name="Ravi Guest", role=UserRole.GUEST)
        owner = User(email="owner@example.com", name="Hotel Owner", role=UserRole.HOTEL)
        other_owner = User(email="owner2@example.com", name="Other Owner", role=UserRole.HOTEL)
        admin = User(email="admin@example.com", name="Admin", role=UserRole.ADMIN)
        db.add_all([guest, other_guest, owner, other_owner, admin])
        await db.flush()

        hotel = Hotel(
            owner_id=owner.id,
            name="Seaview Residency",
            city="Goa",
            cancellation_fee_percent=20,
            cancellation_window_hours=24,
        )
        db.add(hotel)
        await db.flush()

        room = Room(
            hotel_id=hotel.id,
            room_type_id=1,
            name="101",
            capacity=2,
            price_per_night_paise=100000,
            supports_hourly=True,
        )
        room2 = Room(hotel_id=hotel.id, room_type_id=2, name="201", capacity=4, price_per_night_paise=150000)
        db.add_all([room, room2])
        await db.flush()

        db.add_all(
            [
                RoomHourlyStay(room_id=room.id, hours=3, price_paise=40000),
                RoomHourlyStay(room_id=room.id, hours=6, price_paise=70000),
            ]
        )
        addon = Addon(hotel_id=hotel.id, name="Breakfast", price_paise=20000)
        db.add(addon)
        await db.flush()

    return SimpleNamespace(
        guest=Actor(guest.id, UserRole.GUEST),
        other_guest=Actor(other_guest.id, UserRole.GUEST),
        owner=Actor(owner.id, UserRole.HOTEL),
        other_owner=Actor(other_owner.id, UserRole.HOTEL),
        admin=Actor(admin.id, UserRole.ADMIN),
        hotel=hotel,
        room=room,
        room2=room2,
        addon=addon,
    )


@pytest.fixture
def day() -> Callable[..., datetime]:
    """day(n) is 14:00 UTC on the n-th day of a stay window starting ten days from now."""
    start = (datetime.now(UTC) + timedelta(days=10)).replace(hour=14, minute=0, second=0, microsecond=0)

    def _day(n: int, hour: int = 14) -> datetime:
        return start.replace(hour=hour) + timedelta(days=n - 1)

    return _day


@pytest.fixture
def add_booking(session_factory, world):
    """Insert a booking directly, bypassing the engine (e.g. for stays already in the past)."""

    async def _add(
        check_in: datetime,
        check_out: datetime,
        status: BookingStatus = BookingStatus.CONFIRMED,
        paid: bool = False,
        total_paise: int = 225000,
        user_id: int | None = None,
        room_id: int | None = None,
    ) -> Booking:
        async with session_factory.begin() as db:
            booking = Booking(
                user_id=user_id or world.guest.user_id,
                hotel_id=world.hotel.id,
                room_id=room_id or world.room.id,
                check_in=check_in,
                check_out=check_out,
                booking_type=BookingType.DAILY,
                guest_count=1,
                status=status,
                payment_status=BookingPaymentStatus.COMPLETED if paid else BookingPaymentStatus.PENDING,
                payment_mode=PaymentMode.ONLINE,
                total_amount_paise=total_paise,
                remaining_amount_paise=total_paise,
            )
            db.add(booking)
            await db.flush()
            db.add(
                Payment(
                    booking_id=booking.id,
                    user_id=booking.user_id,
                    amount_paise=total_paise,
                    payment_type=PaymentType.FULL,
                    mode=PaymentMode.ONLINE,
                    status=PaymentStatus.COMPLETED if paid else PaymentStatus.PENDING,
                    gateway_payment_id="pay_seeded" if paid else None,
                    paid_at=datetime.now(UTC) if paid else None,
                )
            )
        return booking

    return _add


@pytest.fixture
async def client(settings, session_factory, gateway):
    app = create_app(settings, session_factory=session_factory, gateway=gateway)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers(settings) -> Callable[[Actor], dict]:
    def _headers(actor: Actor) -> dict:
        token = create_access_token(settings, actor.user_id, actor.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers
