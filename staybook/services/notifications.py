"""Notification outbox: enqueue inside business transactions, deliver later.

``NotificationQueue.enqueue`` only adds a row to the caller's session, so the
notification commits with the booking, payment or refund that caused it and
disappears with it on rollback. ``NotificationDispatcher`` runs in the worker,
picks up due rows and hands them to a sender per channel. A failed send is
retried with exponential backoff until max_attempts, then dead-lettered.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from staybook.models.booking import Booking
from staybook.models.notification import NotificationChannel, NotificationOutbox, OutboxStatus
from staybook.models.refund import Refund
from staybook.models.user import User

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """A sender could not deliver a notification. The dispatcher retries it."""


@dataclass(frozen=True)
class Notification:
    user_id: int
    title: str
    body: str
    channel: NotificationChannel = NotificationChannel.EMAIL
    priority: int = 5
    data: dict = field(default_factory=dict)
    source: str | None = None


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: base * factor^(attempt-1), capped at max_delay."""

    max_attempts: int = 5
    base_delay_seconds: int = 30
    max_delay_seconds: int = 3600
    factor: int = 2

    def delay(self, attempts: int) -> timedelta:
        seconds = self.base_delay_seconds * self.factor ** max(attempts - 1, 0)
        return timedelta(seconds=min(seconds, self.max_delay_seconds))


class NotificationQueue:
    def __init__(self, policy: RetryPolicy):
        self._policy = policy

    async def enqueue(self, db: AsyncSession, notification: Notification) -> int:
        """Write an outbox row in the caller's transaction and return its id."""
        row = NotificationOutbox(
            user_id=notification.user_id,
            channel=notification.channel,
            title=notification.title,
            body=notification.body,
            priority=notification.priority,
            data=notification.data,
            source=notification.source,
            max_attempts=self._policy.max_attempts,
            next_attempt_at=datetime.now(UTC),
        )
        db.add(row)
        await db.flush()
        return row.id


class NotificationSender(Protocol):
    async def send(self, notification: NotificationOutbox, user: User) -> None: ...


class InAppSender:
    """In-app notifications are read straight from the outbox by the client."""

    async def send(self, notification: NotificationOutbox, user: User) -> None:
        return None


@dataclass
class DispatchResult:
    sent: int = 0
    retried: int = 0
    dead: int = 0


class NotificationDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        senders: dict[NotificationChannel, NotificationSender],
        policy: RetryPolicy,
        batch_size: int = 50,
    ):
        self._sessions = session_factory
        self._senders = senders
        self._policy = policy
        self._batch_size = batch_size

    async def dispatch_due(self, now: datetime | None = None) -> DispatchResult:
        """Deliver one batch of due notifications."""
        now = now or datetime.now(UTC)
        outcome = DispatchResult()

        async with self._sessions.begin() as db:
            result = await db.execute(
                select(NotificationOutbox)
                .where(
                    NotificationOutbox.status == OutboxStatus.PENDING,
                    NotificationOutbox.next_attempt_at <= now,
                )
                .order_by(NotificationOutbox.priority, NotificationOutbox.next_attempt_at)
                .limit(self._batch_size)
                .with_for_update(skip_locked=True)
            )
            for row in result.scalars().all():
                await self._deliver(db, row, now, outcome)

        if outcome.sent or outcome.retried or outcome.dead:
            logger.info("Notifications: %s sent, %s retrying, %s dead", outcome.sent, outcome.retried, outcome.dead)
        return outcome

    async def _deliver(self, db: AsyncSession, row: NotificationOutbox, now: datetime, outcome: DispatchResult) -> None:
        row.attempts += 1
        sender = self._senders.get(row.channel)
        user = await db.get(User, row.user_id)

        if sender is None or user is None:
            row.status = OutboxStatus.DEAD
            row.last_error = f"No sender for {row.channel.value}" if sender is None else "User not found"
            outcome.dead += 1
            logger.warning("Notification %s dead-lettered: %s", row.id, row.last_error)
            return

        try:
            await sender.send(row, user)
        except DeliveryError as exc:
            row.last_error = str(exc)
            if row.attempts >= row.max_attempts:
                row.status = OutboxStatus.DEAD
                outcome.dead += 1
                logger.warning("Notification %s dead-lettered after %s attempts: %s", row.id, row.attempts, exc)
            else:
                row.next_attempt_at = now + self._policy.delay(row.attempts)
                outcome.retried += 1
                logger.info(
                    "Notification %s attempt %s failed, retrying at %s", row.id, row.attempts, row.next_attempt_at
                )
            return

        row.status = OutboxStatus.SENT
        row.sent_at = now
        row.last_error = None
        outcome.sent += 1


# ---------------------------------------------------------------------------
# Message builders
# ---------------------------------------------------------------------------


def _rupees(paise: int) -> str:
    return f"₹{paise / 100:,.2f}"


def booking_confirmed(booking: Booking, hotel_name: str) -> Notification:
    return Notification(
        user_id=booking.user_id,
        title="Booking confirmed",
        body=(
            f"Your stay at {hotel_name} from {booking.check_in:%d %b %Y %H:%M} to "
            f"{booking.check_out:%d %b %Y %H:%M} is confirmed. Total {_rupees(booking.total_amount_paise)}."
        ),
        priority=2,
        data={"booking_id": booking.id},
        source="booking",
    )


def new_booking_for_hotel(booking: Booking, owner_id: int) -> Notification:
    return Notification(
        user_id=owner_id,
        title="New booking",
        body=f"Booking #{booking.id} for room {booking.room_id} from {booking.check_in:%d %b %Y %H:%M}.",
        channel=NotificationChannel.IN_APP,
        data={"booking_id": booking.id},
        source="booking",
    )


def payment_succeeded(booking: Booking, amount_paise: int) -> Notification:
    return Notification(
        user_id=booking.user_id,
        title="Payment received",
        body=f"We received {_rupees(amount_paise)} for booking #{booking.id}.",
        priority=2,
        data={"booking_id": booking.id, "amount_paise": amount_paise},
        source="payment",
    )


def payment_failed(booking: Booking, reason: str) -> Notification:
    return Notification(
        user_id=booking.user_id,
        title="Payment failed",
        body=f"Payment for booking #{booking.id} did not go through: {reason}",
        priority=1,
        data={"booking_id": booking.id},
        source="payment",
    )


def booking_cancelled(booking: Booking) -> Notification:
    return Notification(
        user_id=booking.user_id,
        title="Booking cancelled",
        body=f"Booking #{booking.id} has been cancelled.",
        data={"booking_id": booking.id, "cancelled_by": booking.cancelled_by},
        source="booking",
    )


def refund_requested(refund: Refund) -> Notification:
    return Notification(
        user_id=refund.user_id,
        title="Refund requested",
        body=(
            f"Your cancellation of booking #{refund.booking_id} is being reviewed. "
            f"Refund due: {_rupees(refund.refund_amount_paise)}."
        ),
        data={"booking_id": refund.booking_id, "refund_id": refund.id},
        source="refund",
    )


def refund_processed(refund: Refund) -> Notification:
    method = refund.refund_method.value if refund.refund_method else "wallet"
    return Notification(
        user_id=refund.user_id,
        title="Refund processed",
        body=(
            f"{_rupees(refund.refund_amount_paise)} for booking #{refund.booking_id} "
            f"has been refunded to your {method}."
        ),
        priority=2,
        data={"booking_id": refund.booking_id, "refund_id": refund.id},
        source="refund",
    )


def refund_rejected(refund: Refund) -> Notification:
    return Notification(
        user_id=refund.user_id,
        title="Refund rejected",
        body=f"Your refund for booking #{refund.booking_id} was rejected: {refund.rejection_reason}",
        data={"booking_id": refund.booking_id, "refund_id": refund.id},
        source="refund",
    )
