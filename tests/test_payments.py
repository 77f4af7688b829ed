"""Payment bridge tests: order creation, verification, wallet settlement, offline payments, webhooks."""

import json
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from conftest import sign, sign_webhook
from staybook.core.errors import (
    ConflictError,
    ForbiddenError,
    GatewayError,
    InsufficientBalanceError,
    NotFoundError,
    SignatureError,
    ValidationError,
)
from staybook.models import (
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    BookingType,
    NotificationOutbox,
    Payment,
    PaymentMode,
    PaymentOrder,
    PaymentOrderStatus,
    PaymentStatus,
    PaymentType,
    TransactionSource,
)
from staybook.services.booking_engine import BookingRequest
from staybook.services.payment_gateway import RazorpayGateway
from staybook.services.payments import payment_status_for


@pytest.fixture
def book(services, world, day):
    async def _book(payment_mode=PaymentMode.ONLINE, advance_paise=0, actor=None):
        request = BookingRequest(
            room_id=world.room.id,
            check_in=day(1),
            check_out=day(3),
            booking_type=BookingType.DAILY,
            guest_count=2,
            payment_mode=payment_mode,
            total_amount_paise=225000,
            advance_amount_paise=advance_paise,
        )
        return await services.bookings.create_booking(actor or world.guest, request)

    return _book


async def _get(session_factory, model, key):
    async with session_factory() as db:
        return await db.get(model, key)


async def _order(session_factory, gateway_order_id) -> PaymentOrder:
    async with session_factory() as db:
        result = await db.execute(select(PaymentOrder).where(PaymentOrder.gateway_order_id == gateway_order_id))
        return result.scalar_one()


async def _outbox_titles(session_factory) -> list[str]:
    async with session_factory() as db:
        result = await db.execute(select(NotificationOutbox.title).order_by(NotificationOutbox.id))
        return list(result.scalars().all())


def _webhook(event: str, order_id: str, payment_id: str, **entity) -> tuple[bytes, str]:
    body = json.dumps(
        {"event": event, "payload": {"payment": {"entity": {"id": payment_id, "order_id": order_id, **entity}}}}
    ).encode()
    return body, sign_webhook(body)


class TestPaymentStatusFor:
    def _payments(self, *statuses):
        return [SimpleNamespace(status=s) for s in statuses]

    def test_all_completed(self):
        payments = self._payments(PaymentStatus.COMPLETED, PaymentStatus.COMPLETED)
        assert payment_status_for(payments) == BookingPaymentStatus.COMPLETED

    def test_some_completed(self):
        payments = self._payments(PaymentStatus.COMPLETED, PaymentStatus.PENDING)
        assert payment_status_for(payments) == BookingPaymentStatus.PARTIAL

    def test_none_completed(self):
        assert payment_status_for(self._payments(PaymentStatus.PENDING)) == BookingPaymentStatus.PENDING

    def test_no_rows(self):
        assert payment_status_for([]) == BookingPaymentStatus.PENDING


class TestRazorpaySignatures:
    """Signature checks go through the Razorpay SDK; no network calls involved."""

    @pytest.fixture
    def razorpay_gateway(self, settings):
        return RazorpayGateway(settings)

    def test_checkout_signature(self, razorpay_gateway):
        assert razorpay_gateway.verify_payment_signature("order_1", "pay_1", sign("order_1", "pay_1"))
        assert not razorpay_gateway.verify_payment_signature("order_1", "pay_1", sign("order_1", "pay_2"))
        assert not razorpay_gateway.verify_payment_signature("order_1", "pay_1", "")

    def test_webhook_signature(self, razorpay_gateway):
        body = b'{"event": "payment.captured"}'
        assert razorpay_gateway.verify_webhook_signature(body, sign_webhook(body))
        assert not razorpay_gateway.verify_webhook_signature(body, sign_webhook(b"{}"))
        assert not razorpay_gateway.verify_webhook_signature(body, None)


# ---------------------------------------------------------------------------
# Order creation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_order(services, session_factory, gateway, world, book):
    detail = await book()
    result = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)

    assert result.order_id == "order_1"
    assert result.amount_paise == 225000
    assert result.key_id == "rzp_test_key"
    assert result.currency == "INR"
    assert result.status == PaymentOrderStatus.CREATED

    payment = await _get(session_factory, Payment, detail.payments[0].id)
    assert payment.gateway_order_id == "order_1"
    assert payment.status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_live_order_is_reused(services, gateway, world, book):
    detail = await book()
    first = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    second = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    assert first.order_id == second.order_id
    assert len(gateway.orders) == 1


@pytest.mark.asyncio
async def test_new_wallet_split_replaces_open_order(services, session_factory, gateway, world, book):
    detail = await book()
    await services.wallet.credit(world.guest.user_id, 50000, TransactionSource.REFUND, "Earlier refund")

    first = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    second = await services.payments.create_payment_order(
        world.guest, detail.booking.id, 225000, wallet_amount_paise=50000
    )

    assert second.order_id != first.order_id
    assert second.amount_paise == 175000
    assert second.wallet_amount_used_paise == 50000
    assert (await _order(session_factory, first.order_id)).status == PaymentOrderStatus.CANCELLED
    # Nothing is debited until the capture is verified
    assert (await services.wallet.get_summary(world.guest.user_id)).balance_paise == 50000


@pytest.mark.asyncio
async def test_create_order_amount_mismatch(services, world, book):
    detail = await book()
    with pytest.raises(ValidationError) as exc:
        await services.payments.create_payment_order(world.guest, detail.booking.id, 200000)
    assert exc.value.rule == "amount_mismatch"


@pytest.mark.asyncio
async def test_create_order_for_someone_elses_booking(services, world, book):
    detail = await book()
    with pytest.raises(ForbiddenError):
        await services.payments.create_payment_order(world.other_guest, detail.booking.id, 225000)


@pytest.mark.asyncio
async def test_create_order_insufficient_wallet(services, world, book):
    detail = await book()
    await services.wallet.credit(world.guest.user_id, 10000, TransactionSource.REFUND, "Refund")
    with pytest.raises(InsufficientBalanceError):
        await services.payments.create_payment_order(world.guest, detail.booking.id, 225000, wallet_amount_paise=50000)


@pytest.mark.asyncio
async def test_create_order_for_offline_booking(services, world, book):
    detail = await book(payment_mode=PaymentMode.OFFLINE)
    with pytest.raises(ValidationError) as exc:
        await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    assert exc.value.rule == "no_online_payment"


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_verify_settles_booking(services, session_factory, gateway, world, book):
    detail = await book()
    order = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    gateway.capture("pay_1", 225000)

    result = await services.payments.verify_payment(order.order_id, "pay_1", sign(order.order_id, "pay_1"), world.guest)
    assert result.amount_paise == 225000

    payment = await _get(session_factory, Payment, detail.payments[0].id)
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.gateway_payment_id == "pay_1"
    assert payment.method == "upi"
    assert payment.paid_at is not None

    booking = await _get(session_factory, Booking, detail.booking.id)
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == BookingPaymentStatus.COMPLETED

    stored = await _order(session_factory, order.order_id)
    assert stored.status == PaymentOrderStatus.PAID
    assert stored.attempts == 1
    assert (await _outbox_titles(session_factory))[-1] == "Payment received"


@pytest.mark.asyncio
async def test_second_verify_is_a_conflict(services, session_factory, gateway, world, book):
    detail = await book()
    order = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    gateway.capture("pay_1", 225000)
    signature = sign(order.order_id, "pay_1")

    await services.payments.verify_payment(order.order_id, "pay_1", signature, world.guest)
    outbox_before = await _outbox_titles(session_factory)

    with pytest.raises(ConflictError) as exc:
        await services.payments.verify_payment(order.order_id, "pay_1", signature, world.guest)
    assert exc.value.rule == "already_paid"

    assert await _outbox_titles(session_factory) == outbox_before
    assert (await _order(session_factory, order.order_id)).status == PaymentOrderStatus.PAID


@pytest.mark.asyncio
async def test_bad_signature_marks_order_failed(services, session_factory, gateway, world, book):
    detail = await book()
    order = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    gateway.capture("pay_1", 225000)

    with pytest.raises(GatewayError) as exc:
        await services.payments.verify_payment(order.order_id, "pay_1", "forged", world.guest)
    assert exc.value.rule == "bad_signature"

    assert (await _order(session_factory, order.order_id)).status == PaymentOrderStatus.FAILED
    booking = await _get(session_factory, Booking, detail.booking.id)
    assert booking.status == BookingStatus.PAYMENT_FAILED
    assert booking.payment_status == BookingPaymentStatus.FAILED
    assert (await _get(session_factory, Payment, detail.payments[0].id)).status == PaymentStatus.PENDING
    assert (await _outbox_titles(session_factory))[-1] == "Payment failed"


@pytest.mark.asyncio
async def test_retry_after_failure(services, session_factory, gateway, world, book):
    detail = await book()
    first = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    with pytest.raises(GatewayError):
        await services.payments.verify_payment(first.order_id, "pay_1", "forged", world.guest)

    retry = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    assert retry.order_id != first.order_id
    gateway.capture("pay_2", 225000)
    await services.payments.verify_payment(retry.order_id, "pay_2", sign(retry.order_id, "pay_2"), world.guest)

    booking = await _get(session_factory, Booking, detail.booking.id)
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == BookingPaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_captured_amount_mismatch(services, session_factory, gateway, world, book):
    detail = await book()
    order = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    gateway.capture("pay_1", 200000)

    with pytest.raises(GatewayError) as exc:
        await services.payments.verify_payment(order.order_id, "pay_1", sign(order.order_id, "pay_1"))
    assert exc.value.rule == "amount_mismatch"
    assert (await _get(session_factory, Payment, detail.payments[0].id)).status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_payment_not_captured(services, session_factory, gateway, world, book):
    detail = await book()
    order = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    gateway.capture("pay_1", 225000, status="authorized")

    with pytest.raises(GatewayError) as exc:
        await services.payments.verify_payment(order.order_id, "pay_1", sign(order.order_id, "pay_1"))
    assert exc.value.rule == "not_captured"
    assert (await _order(session_factory, order.order_id)).status == PaymentOrderStatus.FAILED


@pytest.mark.asyncio
async def test_verify_unknown_order(services, world):
    with pytest.raises(NotFoundError):
        await services.payments.verify_payment("order_missing", "pay_1", sign("order_missing", "pay_1"))


@pytest.mark.asyncio
async def test_settlement_failure_after_capture_marks_order_failed(services, session_factory, gateway, world, book):
    detail = await book()
    await services.wallet.credit(world.guest.user_id, 50000, TransactionSource.ADMIN_CREDIT, "Promo")
    order = await services.payments.create_payment_order(
        world.guest, detail.booking.id, 225000, wallet_amount_paise=50000
    )
    # The wallet is spent elsewhere before the guest finishes checkout
    await services.wallet.debit(world.guest.user_id, 50000, TransactionSource.BOOKING_PAYMENT, "Other booking")
    gateway.capture("pay_1", 175000)

    with pytest.raises(InsufficientBalanceError):
        await services.payments.verify_payment(order.order_id, "pay_1", sign(order.order_id, "pay_1"), world.guest)

    assert (await _order(session_factory, order.order_id)).status == PaymentOrderStatus.FAILED
    booking = await _get(session_factory, Booking, detail.booking.id)
    assert booking.status == BookingStatus.PAYMENT_FAILED
    assert booking.payment_status == BookingPaymentStatus.FAILED
    assert (await _get(session_factory, Payment, detail.payments[0].id)).status == PaymentStatus.PENDING
    assert (await _outbox_titles(session_factory))[-1] == "Payment failed"


@pytest.mark.asyncio
async def test_webhook_settlement_failure_is_acknowledged(services, session_factory, gateway, world, book):
    detail = await book()
    await services.wallet.credit(world.guest.user_id, 50000, TransactionSource.ADMIN_CREDIT, "Promo")
    order = await services.payments.create_payment_order(
        world.guest, detail.booking.id, 225000, wallet_amount_paise=50000
    )
    await services.wallet.debit(world.guest.user_id, 50000, TransactionSource.BOOKING_PAYMENT, "Other booking")
    gateway.capture("pay_1", 175000)
    body, signature = _webhook("payment.captured", order.order_id, "pay_1", amount=175000)

    assert await services.payments.handle_webhook(body, signature) == "failed"
    assert (await _order(session_factory, order.order_id)).status == PaymentOrderStatus.FAILED
    assert (await _get(session_factory, Booking, detail.booking.id)).status == BookingStatus.PAYMENT_FAILED


@pytest.mark.asyncio
async def test_verify_by_another_guest_leaves_order_open(services, session_factory, gateway, world, book):
    detail = await book()
    order = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    gateway.capture("pay_1", 225000)
    with pytest.raises(ForbiddenError):
        await services.payments.verify_payment(
            order.order_id, "pay_1", sign(order.order_id, "pay_1"), world.other_guest
        )
    assert (await _order(session_factory, order.order_id)).status == PaymentOrderStatus.CREATED
    assert (await _get(session_factory, Booking, detail.booking.id)).status != BookingStatus.PAYMENT_FAILED


# ---------------------------------------------------------------------------
# Wallet settlement
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_wallet_covers_everything(services, session_factory, gateway, world, book):
    detail = await book()
    await services.wallet.credit(world.guest.user_id, 300000, TransactionSource.REFUND, "Refund")

    result = await services.payments.create_payment_order(
        world.guest, detail.booking.id, 225000, wallet_amount_paise=225000
    )
    assert result.order_id is None
    assert result.amount_paise == 0
    assert result.status == PaymentOrderStatus.PAID
    assert gateway.orders == {}

    payment = await _get(session_factory, Payment, detail.payments[0].id)
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.method == "wallet"
    assert payment.wallet_amount_used_paise == 225000
    assert (await _get(session_factory, Booking, detail.booking.id)).payment_status == BookingPaymentStatus.COMPLETED
    assert (await services.wallet.get_summary(world.guest.user_id)).balance_paise == 75000


@pytest.mark.asyncio
async def test_wallet_plus_gateway(services, session_factory, gateway, world, book):
    detail = await book()
    await services.wallet.credit(world.guest.user_id, 50000, TransactionSource.REFUND, "Refund")

    order = await services.payments.create_payment_order(
        world.guest, detail.booking.id, 225000, wallet_amount_paise=50000
    )
    gateway.capture("pay_1", 175000)
    await services.payments.verify_payment(order.order_id, "pay_1", sign(order.order_id, "pay_1"), world.guest)

    payment = await _get(session_factory, Payment, detail.payments[0].id)
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.wallet_amount_used_paise == 50000
    assert (await services.wallet.get_summary(world.guest.user_id)).balance_paise == 0

    [debit] = await services.wallet.list_transactions(
        world.guest.user_id, source=TransactionSource.BOOKING_PAYMENT
    )
    assert debit.amount_paise == 50000
    assert debit.reference_id == str(detail.booking.id)


@pytest.mark.asyncio
async def test_fully_paid_booking_rejects_new_order(services, gateway, world, book):
    detail = await book()
    order = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    gateway.capture("pay_1", 225000)
    await services.payments.verify_payment(order.order_id, "pay_1", sign(order.order_id, "pay_1"))

    with pytest.raises(ConflictError) as exc:
        await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    assert exc.value.rule == "already_paid"


# ---------------------------------------------------------------------------
# Advance + offline
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_advance_then_offline_remainder(services, session_factory, gateway, world, book):
    detail = await book(payment_mode=PaymentMode.OFFLINE, advance_paise=50000)
    advance, remaining = detail.payments
    assert advance.payment_type == PaymentType.ADVANCE

    order = await services.payments.create_payment_order(world.guest, detail.booking.id, 50000)
    assert order.payment_id == advance.id
    gateway.capture("pay_adv", 50000)
    await services.payments.verify_payment(order.order_id, "pay_adv", sign(order.order_id, "pay_adv"))
    assert (await _get(session_factory, Booking, detail.booking.id)).payment_status == BookingPaymentStatus.PARTIAL

    paid = await services.payments.record_offline_payment(world.owner, remaining.id, method="cash")
    assert paid.status == PaymentStatus.COMPLETED
    assert paid.method == "cash"
    assert (await _get(session_factory, Booking, detail.booking.id)).payment_status == BookingPaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_offline_payment_access_and_state(services, world, book):
    detail = await book(payment_mode=PaymentMode.OFFLINE)
    payment_id = detail.payments[0].id

    for actor in (world.guest, world.other_owner):
        with pytest.raises(ForbiddenError):
            await services.payments.record_offline_payment(actor, payment_id)

    await services.payments.record_offline_payment(world.admin, payment_id, method="card")
    with pytest.raises(ConflictError) as exc:
        await services.payments.record_offline_payment(world.owner, payment_id)
    assert exc.value.rule == "already_processed"


@pytest.mark.asyncio
async def test_offline_recording_rejects_online_payment(services, world, book):
    detail = await book()
    with pytest.raises(ValidationError) as exc:
        await services.payments.record_offline_payment(world.owner, detail.payments[0].id)
    assert exc.value.rule == "not_offline"


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_webhook_capture_settles_and_repeats_are_ignored(services, session_factory, gateway, world, book):
    detail = await book()
    order = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    gateway.capture("pay_1", 225000)
    body, signature = _webhook("payment.captured", order.order_id, "pay_1", amount=225000)

    assert await services.payments.handle_webhook(body, signature) == "captured"
    assert (await _get(session_factory, Booking, detail.booking.id)).payment_status == BookingPaymentStatus.COMPLETED

    assert await services.payments.handle_webhook(body, signature) == "ignored"

    # The checkout callback arriving after the webhook changes nothing
    with pytest.raises(ConflictError):
        await services.payments.verify_payment(order.order_id, "pay_1", sign(order.order_id, "pay_1"))
    assert (await _get(session_factory, Payment, detail.payments[0].id)).status == PaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_webhook_payment_failed(services, session_factory, world, book):
    detail = await book()
    order = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    body, signature = _webhook("payment.failed", order.order_id, "pay_1", error_description="Card declined")

    assert await services.payments.handle_webhook(body, signature) == "failed"
    assert (await _order(session_factory, order.order_id)).status == PaymentOrderStatus.FAILED
    assert (await _get(session_factory, Booking, detail.booking.id)).status == BookingStatus.PAYMENT_FAILED


@pytest.mark.asyncio
async def test_webhook_failed_after_capture_keeps_paid_order(services, session_factory, gateway, world, book):
    detail = await book()
    order = await services.payments.create_payment_order(world.guest, detail.booking.id, 225000)
    gateway.capture("pay_1", 225000)
    await services.payments.verify_payment(order.order_id, "pay_1", sign(order.order_id, "pay_1"))

    body, signature = _webhook("payment.failed", order.order_id, "pay_0")
    await services.payments.handle_webhook(body, signature)

    assert (await _order(session_factory, order.order_id)).status == PaymentOrderStatus.PAID
    assert (await _get(session_factory, Booking, detail.booking.id)).status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_webhook_bad_signature(services):
    body, _ = _webhook("payment.captured", "order_1", "pay_1")
    with pytest.raises(SignatureError):
        await services.payments.handle_webhook(body, "not-the-signature")
    with pytest.raises(SignatureError):
        await services.payments.handle_webhook(body, None)


@pytest.mark.asyncio
async def test_webhook_malformed_payload(services):
    body = b'{"event": "payment.captured"}'
    with pytest.raises(ValidationError) as exc:
        await services.payments.handle_webhook(body, sign_webhook(body))
    assert exc.value.rule == "webhook_payload"


@pytest.mark.asyncio
async def test_webhook_other_events_ignored(services):
    body, signature = _webhook("payment.authorized", "order_1", "pay_1")
    assert await services.payments.handle_webhook(body, signature) == "ignored"
