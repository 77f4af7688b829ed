"""Service wiring.

Every service gets its session factory and collaborators here, once per
process. The API stores the result on ``app.state.services``; the Celery
worker builds its own.
"""

from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from staybook.core.config import Settings
from staybook.models.notification import NotificationChannel
from staybook.services.availability import AvailabilityChecker
from staybook.services.booking_engine import BookingEngine
from staybook.services.cancellation import CancellationResolver
from staybook.services.coupons import CouponValidator, DatabaseCouponValidator
from staybook.services.email import EmailSender
from staybook.services.notifications import (
    InAppSender,
    NotificationDispatcher,
    NotificationQueue,
    NotificationSender,
    RetryPolicy,
)
from staybook.services.payment_gateway import PaymentGateway, RazorpayGateway
from staybook.services.payments import PaymentBridge
from staybook.services.pricing import FeeSchedule, PricingService
from staybook.services.wallet import WalletLedger


@dataclass
class Services:
    availability: AvailabilityChecker
    pricing: PricingService
    bookings: BookingEngine
    payments: PaymentBridge
    wallet: WalletLedger
    cancellations: CancellationResolver
    queue: NotificationQueue
    dispatcher: NotificationDispatcher


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    gateway: PaymentGateway | None = None,
    coupon_validator: CouponValidator | None = None,
    fees: FeeSchedule | None = None,
    senders: dict[NotificationChannel, NotificationSender] | None = None,
) -> Services:
    gateway = gateway or RazorpayGateway(settings)
    fees = fees or FeeSchedule(tax_percent=settings.tax_percent, platform_fee_paise=settings.platform_fee_paise)
    policy = RetryPolicy(
        max_attempts=settings.notification_max_attempts,
        base_delay_seconds=settings.notification_base_delay_seconds,
        max_delay_seconds=settings.notification_max_delay_seconds,
    )
    if senders is None:
        senders = {
            NotificationChannel.EMAIL: EmailSender(settings),
            NotificationChannel.IN_APP: InAppSender(),
        }

    queue = NotificationQueue(policy)
    pricing = PricingService(session_factory, fees, coupon_validator or DatabaseCouponValidator())

    return Services(
        availability=AvailabilityChecker(session_factory),
        pricing=pricing,
        bookings=BookingEngine(session_factory, pricing, queue),
        payments=PaymentBridge(
            session_factory,
            gateway,
            queue,
            currency=settings.currency,
            order_ttl=timedelta(minutes=settings.payment_order_ttl_minutes),
        ),
        wallet=WalletLedger(session_factory),
        cancellations=CancellationResolver(
            session_factory,
            gateway,
            queue,
            no_show_buffer=timedelta(minutes=settings.no_show_buffer_minutes),
        ),
        queue=queue,
        dispatcher=NotificationDispatcher(
            session_factory, senders, policy, batch_size=settings.notification_batch_size
        ),
    )
