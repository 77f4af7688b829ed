"""Notification outbox tests: enqueue with the business write, dispatch, retry, dead-lettering, email."""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import aiosmtplib
import pytest
from sqlalchemy import func, select

from staybook.models import NotificationChannel, NotificationOutbox, OutboxStatus
from staybook.services.email import EmailSender
from staybook.services.notifications import (
    DeliveryError,
    Notification,
    NotificationDispatcher,
    NotificationQueue,
    RetryPolicy,
)

POLICY = RetryPolicy(max_attempts=3, base_delay_seconds=30, max_delay_seconds=3600)


async def _enqueue(session_factory, *notifications) -> list[int]:
    queue = NotificationQueue(POLICY)
    async with session_factory.begin() as db:
        return [await queue.enqueue(db, n) for n in notifications]


async def _row(session_factory, row_id) -> NotificationOutbox:
    async with session_factory() as db:
        return await db.get(NotificationOutbox, row_id)


class TestRetryPolicy:
    def test_delays_double(self):
        assert [POLICY.delay(n).total_seconds() for n in (1, 2, 3, 4)] == [30, 60, 120, 240]

    def test_delay_capped(self):
        policy = RetryPolicy(base_delay_seconds=600, max_delay_seconds=3600)
        assert policy.delay(10) == timedelta(hours=1)


# ---------------------------------------------------------------------------
# Enqueue
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_enqueue_rolls_back_with_the_business_write(session_factory, world):
    queue = NotificationQueue(POLICY)
    with pytest.raises(RuntimeError):
        async with session_factory.begin() as db:
            await queue.enqueue(db, Notification(world.guest.user_id, "Booking confirmed", "..."))
            raise RuntimeError("booking insert failed")

    async with session_factory() as db:
        assert (await db.execute(select(func.count()).select_from(NotificationOutbox))).scalar_one() == 0


@pytest.mark.asyncio
async def test_enqueue_stores_policy_and_fields(session_factory, world):
    [row_id] = await _enqueue(
        session_factory,
        Notification(world.guest.user_id, "Payment failed", "Card declined", priority=1, data={"booking_id": 7}),
    )
    row = await _row(session_factory, row_id)
    assert row.status == OutboxStatus.PENDING
    assert row.max_attempts == 3
    assert row.priority == 1
    assert row.data == {"booking_id": 7}
    assert row.attempts == 0


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_dispatch_sends_due_notifications(session_factory, world):
    [row_id] = await _enqueue(session_factory, Notification(world.guest.user_id, "Booking confirmed", "See you soon"))
    sender = AsyncMock()
    dispatcher = NotificationDispatcher(session_factory, {NotificationChannel.EMAIL: sender}, POLICY)

    result = await dispatcher.dispatch_due(datetime.now(UTC) + timedelta(seconds=1))
    assert (result.sent, result.retried, result.dead) == (1, 0, 0)

    row = await _row(session_factory, row_id)
    assert row.status == OutboxStatus.SENT
    assert row.attempts == 1
    assert row.sent_at is not None

    sent_row, user = sender.send.await_args.args
    assert sent_row.id == row_id
    assert user.email == "guest@example.com"

    # Nothing left on the next pass
    result = await dispatcher.dispatch_due(datetime.now(UTC) + timedelta(seconds=2))
    assert result.sent == 0


@pytest.mark.asyncio
async def test_failed_delivery_retries_with_backoff_then_dies(session_factory, world):
    [row_id] = await _enqueue(session_factory, Notification(world.guest.user_id, "Booking confirmed", "..."))
    sender = AsyncMock()
    sender.send.side_effect = DeliveryError("SMTP connection refused")
    dispatcher = NotificationDispatcher(session_factory, {NotificationChannel.EMAIL: sender}, POLICY)
    t0 = datetime.now(UTC) + timedelta(seconds=1)

    result = await dispatcher.dispatch_due(t0)
    assert result.retried == 1
    row = await _row(session_factory, row_id)
    assert row.next_attempt_at == t0 + timedelta(seconds=30)
    assert row.last_error == "SMTP connection refused"

    # Not due yet
    assert (await dispatcher.dispatch_due(t0 + timedelta(seconds=10))).retried == 0

    t1 = t0 + timedelta(seconds=30)
    assert (await dispatcher.dispatch_due(t1)).retried == 1
    assert (await _row(session_factory, row_id)).next_attempt_at == t1 + timedelta(seconds=60)

    result = await dispatcher.dispatch_due(t1 + timedelta(seconds=60))
    assert result.dead == 1
    row = await _row(session_factory, row_id)
    assert row.status == OutboxStatus.DEAD
    assert row.attempts == 3
    assert sender.send.await_count == 3


@pytest.mark.asyncio
async def test_one_failure_does_not_block_others(session_factory, world):
    ids = await _enqueue(
        session_factory,
        Notification(world.guest.user_id, "For guest", "..."),
        Notification(world.other_guest.user_id, "For other guest", "..."),
    )

    async def send(row, user):
        if user.id == world.guest.user_id:
            raise DeliveryError("Mailbox full")

    sender = SimpleNamespace(send=AsyncMock(side_effect=send))
    dispatcher = NotificationDispatcher(session_factory, {NotificationChannel.EMAIL: sender}, POLICY)

    result = await dispatcher.dispatch_due(datetime.now(UTC) + timedelta(seconds=1))
    assert (result.sent, result.retried) == (1, 1)
    assert (await _row(session_factory, ids[0])).status == OutboxStatus.PENDING
    assert (await _row(session_factory, ids[1])).status == OutboxStatus.SENT


@pytest.mark.asyncio
async def test_channel_without_sender_is_dead_lettered(session_factory, world):
    [row_id] = await _enqueue(
        session_factory, Notification(world.guest.user_id, "Push", "...", channel=NotificationChannel.PUSH)
    )
    dispatcher = NotificationDispatcher(session_factory, {NotificationChannel.EMAIL: AsyncMock()}, POLICY)

    result = await dispatcher.dispatch_due(datetime.now(UTC) + timedelta(seconds=1))
    assert result.dead == 1
    row = await _row(session_factory, row_id)
    assert row.status == OutboxStatus.DEAD
    assert row.last_error == "No sender for push"


@pytest.mark.asyncio
async def test_higher_priority_goes_first(session_factory, world):
    low, high = await _enqueue(
        session_factory,
        Notification(world.guest.user_id, "Newsletter", "...", priority=9),
        Notification(world.guest.user_id, "Payment failed", "...", priority=1),
    )
    dispatcher = NotificationDispatcher(
        session_factory, {NotificationChannel.EMAIL: AsyncMock()}, POLICY, batch_size=1
    )

    await dispatcher.dispatch_due(datetime.now(UTC) + timedelta(seconds=1))
    assert (await _row(session_factory, high)).status == OutboxStatus.SENT
    assert (await _row(session_factory, low)).status == OutboxStatus.PENDING


# ---------------------------------------------------------------------------
# Email sender
# ---------------------------------------------------------------------------


class TestEmailSender:
    row = SimpleNamespace(id=1, title="Booking confirmed", body="Your stay is confirmed.")
    user = SimpleNamespace(email="guest@example.com", name="Asha")

    def test_build_message(self, settings):
        message = EmailSender(settings).build_message(self.row, self.user)
        assert message["To"] == "guest@example.com"
        assert message["Subject"] == "Booking confirmed | StayBook"
        assert "Hi Asha" in message.get_content()

    @pytest.mark.asyncio
    async def test_send(self, settings):
        with patch("staybook.services.email.aiosmtplib.send", new_callable=AsyncMock) as mock_send:
            await EmailSender(settings).send(self.row, self.user)
        mock_send.assert_awaited_once()
        assert mock_send.await_args.kwargs["port"] == settings.smtp_port

    @pytest.mark.asyncio
    async def test_smtp_failure_becomes_delivery_error(self, settings):
        with patch(
            "staybook.services.email.aiosmtplib.send",
            new_callable=AsyncMock,
            side_effect=aiosmtplib.SMTPException("451 try later"),
        ):
            with pytest.raises(DeliveryError):
                await EmailSender(settings).send(self.row, self.user)
